from django.core.management.base import BaseCommand, CommandError

from catalog_collections.exceptions import CollectionError
from catalog_collections.service import CollectionService


class Command(BaseCommand):
    help = "Resolves one page of a collection's products and prints its edges."

    def add_arguments(self, parser):
        parser.add_argument("collection_id", help="Primary key of the collection")
        parser.add_argument("--first", type=int, default=None)
        parser.add_argument("--after", default=None)
        parser.add_argument("--last", type=int, default=None)
        parser.add_argument("--before", default=None)
        parser.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Seconds the catalog scan may take.",
        )

    def handle(self, *args, **options):
        try:
            page = CollectionService().get_collection_products(
                options["collection_id"],
                first=options["first"],
                after=options["after"],
                last=options["last"],
                before=options["before"],
                timeout=options["timeout"],
            )
        except CollectionError as e:
            raise CommandError(f"{e.code}: {e.message}") from e

        for edge in page.edges:
            self.stdout.write(f"{edge.cursor}\t{edge.node}")
        self.stdout.write(
            f"generation={page.generation} "
            f"has_next_page={page.has_next_page} "
            f"has_previous_page={page.has_previous_page}"
        )
