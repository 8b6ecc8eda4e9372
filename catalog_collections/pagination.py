from __future__ import annotations

import collections
import dataclasses
import hashlib
import json
import logging
from collections.abc import Iterable, Iterator
from json import JSONDecodeError
from typing import Any, ClassVar, Generic, Optional, TypeVar

from strawberry.relay import from_base64, to_base64
from typing_extensions import Self

from .exceptions import InvalidPaginationArguments, StaleCursor

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class PrefixDigest:
    """Running digest over the keys of a sequence prefix.

    Two sequences share the same prefix up to a position exactly when their
    digests at that position are equal.
    """

    def __init__(self):
        self._hash = hashlib.blake2b(digest_size=12)

    def push(self, key: Any) -> str:
        self._hash.update(f"{key}\x1f".encode())
        return self._hash.copy().hexdigest()


@dataclasses.dataclass(frozen=True)
class CollectionCursor:
    """Position of an item inside one collection's resolved membership.

    The digest covers every key up to and including `item_key`, which allows
    checking that nothing before the position changed in a later generation.
    """

    PREFIX: ClassVar[str] = "collectioncursor"

    collection_id: str
    generation: int
    item_key: Any
    index: int
    digest: str

    @classmethod
    def from_cursor(cls, cursor: str) -> Self:
        try:
            type_, values_json = from_base64(cursor)
        except (ValueError, TypeError, AttributeError) as e:
            raise StaleCursor("Invalid cursor") from e
        if type_ != cls.PREFIX:
            raise StaleCursor("Invalid cursor")
        try:
            values = json.loads(values_json)
        except JSONDecodeError as e:
            raise StaleCursor("Invalid cursor") from e
        if (
            not isinstance(values, list)
            or len(values) != 5
            or not isinstance(values[0], str)
            or not isinstance(values[1], int)
            or not isinstance(values[3], int)
            or not isinstance(values[4], str)
            or values[1] < 0
            or values[3] < 0
        ):
            raise StaleCursor("Invalid cursor")

        collection_id, generation, item_key, index, digest = values
        return cls(
            collection_id=collection_id,
            generation=generation,
            item_key=item_key,
            index=index,
            digest=digest,
        )

    def to_cursor(self) -> str:
        return to_base64(
            self.PREFIX,
            json.dumps(
                [
                    self.collection_id,
                    self.generation,
                    self.item_key,
                    self.index,
                    self.digest,
                ],
                separators=(",", ":"),
            ),
        )


@dataclasses.dataclass(frozen=True)
class PageEdge(Generic[_T]):
    cursor: str
    node: _T


@dataclasses.dataclass(frozen=True)
class Page(Generic[_T]):
    edges: list[PageEdge[_T]]
    has_next_page: bool
    has_previous_page: bool
    generation: int

    @property
    def start_cursor(self) -> Optional[str]:
        return self.edges[0].cursor if self.edges else None

    @property
    def end_cursor(self) -> Optional[str]:
        return self.edges[-1].cursor if self.edges else None

    @property
    def nodes(self) -> list[_T]:
        return [edge.node for edge in self.edges]


@dataclasses.dataclass(frozen=True)
class PaginationArguments:
    """Validated pagination arguments: exactly one direction, a limit or None."""

    limit: Optional[int]
    backwards: bool = False
    after: Optional[str] = None
    before: Optional[str] = None


def validate_pagination_arguments(
    *,
    first: Optional[int] = None,
    after: Optional[str] = None,
    last: Optional[int] = None,
    before: Optional[str] = None,
    max_results: Optional[int] = None,
    default_limit: Optional[int] = None,
) -> PaginationArguments:
    forwards = first is not None or after is not None
    backwards = last is not None or before is not None
    if forwards and backwards:
        raise InvalidPaginationArguments(
            "Forward ('first'/'after') and backward ('last'/'before') "
            "pagination arguments cannot be combined."
        )

    for name, value in (("first", first), ("last", last)):
        if value is None:
            continue
        if value < 0:
            raise InvalidPaginationArguments(
                f"Argument '{name}' must be a non-negative integer."
            )
        if max_results is not None and value > max_results:
            raise InvalidPaginationArguments(
                f"Argument '{name}' cannot be higher than {max_results}."
            )

    if backwards:
        return PaginationArguments(
            limit=last if last is not None else default_limit,
            backwards=True,
            before=before,
        )
    return PaginationArguments(
        limit=first if first is not None else default_limit, after=after
    )


def decode_cursor(
    cursor: str, *, collection_id: str, generation: int
) -> CollectionCursor:
    decoded = CollectionCursor.from_cursor(cursor)
    if decoded.collection_id != collection_id:
        raise StaleCursor("Cursor belongs to another collection")
    if decoded.generation > generation:
        raise StaleCursor("Cursor was issued for a newer version of this collection")
    return decoded


def _walk(sequence: Iterable[_T]) -> Iterator[tuple[int, _T, str]]:
    digest = PrefixDigest()
    iterator = iter(sequence)
    try:
        for index, key in enumerate(iterator):
            yield index, key, digest.push(key)
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()


def _seek(walker: Iterator[tuple[int, Any, str]], cursor: CollectionCursor) -> None:
    """Advance `walker` past the item `cursor` points to."""
    for index, key, digest in walker:
        if index < cursor.index:
            continue
        if key == cursor.item_key and digest == cursor.digest:
            return
        break
    logger.warning(
        "Stale cursor for collection %s at index %s (generation %s)",
        cursor.collection_id,
        cursor.index,
        cursor.generation,
    )
    raise StaleCursor(
        "The collection changed before the cursor position, restart pagination"
    )


def paginate(
    sequence: Iterable[_T],
    *,
    collection_id: Any,
    generation: int,
    first: Optional[int] = None,
    after: Optional[str] = None,
    last: Optional[int] = None,
    before: Optional[str] = None,
    max_results: Optional[int] = None,
    default_limit: Optional[int] = None,
) -> Page[_T]:
    """Slice an ordered sequence of item keys into a cursor-addressed page.

    The sequence is streamed: forward pages stop reading one item past the
    window, backward pages keep at most `last + 1` items in memory. Cursors
    embed `generation`; a cursor from an older generation is honoured only
    while the sequence prefix up to its item is unchanged, otherwise
    `StaleCursor` is raised.
    """
    args = validate_pagination_arguments(
        first=first,
        after=after,
        last=last,
        before=before,
        max_results=max_results,
        default_limit=default_limit,
    )
    collection_id = str(collection_id)
    cursor_value = args.before if args.backwards else args.after
    cursor = (
        decode_cursor(cursor_value, collection_id=collection_id, generation=generation)
        if cursor_value is not None
        else None
    )

    def make_edge(index: int, key: _T, digest: str) -> PageEdge[_T]:
        return PageEdge(
            cursor=CollectionCursor(
                collection_id=collection_id,
                generation=generation,
                item_key=key,
                index=index,
                digest=digest,
            ).to_cursor(),
            node=key,
        )

    walker = _walk(sequence)
    try:
        if args.backwards:
            return _paginate_backwards(walker, args.limit, cursor, generation, make_edge)
        return _paginate_forwards(walker, args.limit, cursor, generation, make_edge)
    finally:
        walker.close()


def _paginate_forwards(walker, limit, cursor, generation, make_edge) -> Page:
    has_previous_page = False
    if cursor is not None:
        _seek(walker, cursor)
        has_previous_page = True

    edges = []
    has_next_page = False
    for index, key, digest in walker:
        if limit is not None and len(edges) >= limit:
            has_next_page = True
            break
        edges.append(make_edge(index, key, digest))

    return Page(
        edges=edges,
        has_next_page=has_next_page,
        has_previous_page=has_previous_page,
        generation=generation,
    )


def _paginate_backwards(walker, limit, cursor, generation, make_edge) -> Page:
    window: collections.deque = collections.deque(
        maxlen=limit + 1 if limit is not None else None
    )
    has_next_page = False
    for index, key, digest in walker:
        if cursor is not None and index == cursor.index:
            if key != cursor.item_key or digest != cursor.digest:
                break
            has_next_page = True
            break
        window.append((index, key, digest))

    if cursor is not None and not has_next_page:
        logger.warning(
            "Stale cursor for collection %s at index %s (generation %s)",
            cursor.collection_id,
            cursor.index,
            cursor.generation,
        )
        raise StaleCursor(
            "The collection changed before the cursor position, restart pagination"
        )

    items = list(window)
    has_previous_page = False
    if limit is not None and len(items) > limit:
        has_previous_page = True
        items = items[len(items) - limit :]

    return Page(
        edges=[make_edge(*item) for item in items],
        has_next_page=has_next_page,
        has_previous_page=has_previous_page,
        generation=generation,
    )
