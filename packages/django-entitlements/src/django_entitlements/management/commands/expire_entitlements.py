"""Management command to expire entitlements past their expires_at."""

from django.core.management.base import BaseCommand

from django_entitlements.lifecycle import expire_entitlements


class Command(BaseCommand):
    help = 'Move active entitlements whose expires_at has passed to expired'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show count of entitlements that would expire without changing them'
        )

    def handle(self, *args, **options):
        if options['dry_run']:
            count = expire_entitlements(dry_run=True)
            self.stdout.write(f'Would expire {count} entitlements')
            return

        count = expire_entitlements()
        self.stdout.write(self.style.SUCCESS(f'Expired {count} entitlements'))
