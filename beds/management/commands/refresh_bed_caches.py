from django.core.management.base import BaseCommand
from django.utils import timezone

from beds.services import openmrs
from beds.services.cache import broadcast_refresh, configured_tags, eligibility_key, inventory_key
from beds.services.eligibility import endpoint_for, resolve_candidates
from beds.services.inventory import load_resources


class Command(BaseCommand):
    help = "Warm the bed inventory and eligibility caches; broadcast a WebSocket refresh event."

    def add_arguments(self, parser):
        parser.add_argument('--skip-eligibility', action='store_true', help="Only refresh the inventories.")

    def handle(self, *args, **options):
        now = timezone.now()
        client = openmrs.get_client()
        keys_refreshed = []

        # Unrestricted inventory per configured tag
        for tag in configured_tags():
            result = load_resources(tag, client=client)
            keys_refreshed.append(inventory_key(tag))
            if result.error:
                self.stderr.write(self.style.WARNING(f"{tag}: {result.error}"))
            for w in result.warnings:
                self.stderr.write(self.style.WARNING(f"{tag}: {w.location_name}: {w.message}"))

        if not options['skip_eligibility']:
            result = resolve_candidates(client=client)
            keys_refreshed.append(eligibility_key(result.strategy, endpoint_for(result.strategy)))
            if result.error:
                self.stderr.write(self.style.WARNING(f"eligibility: {result.error}"))

        broadcast_refresh(keys_refreshed, reason='refresh_bed_caches')
        self.stdout.write(self.style.SUCCESS(f"Refreshed {len(keys_refreshed)} keys at {now}"))
