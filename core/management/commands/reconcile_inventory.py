# Reconcile Inventory Management Command
from django.core.management.base import BaseCommand
from django.db.models import Q
from core.models import Item


class Command(BaseCommand):
    help = 'Finds items whose availability flag disagrees with their quantity and repairs them.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report drifted items without saving changes to the database.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=1000,
            help='Batch size for bulk processing.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        batch_size = options['batch_size']

        self.stdout.write('Checking item availability...')

        drifted = Item.objects.filter(
            Q(is_available=True, quantity=0) | Q(is_available=False, quantity__gt=0)
        ).order_by('pk').iterator(chunk_size=batch_size)

        updates = []
        count = 0

        for item in drifted:
            expected = item.quantity > 0
            self.stdout.write(
                f'  {"[DRY-RUN] " if dry_run else ""}Item {item.id} ({item.name}): '
                f'quantity {item.quantity}, available {item.is_available} -> {expected}'
            )
            item.is_available = expected
            updates.append(item)
            count += 1

            if len(updates) >= batch_size:
                if not dry_run:
                    Item.objects.bulk_update(updates, ['is_available'])
                updates = []

        if updates and not dry_run:
            Item.objects.bulk_update(updates, ['is_available'])

        self.stdout.write(f'Found {count} drifted item(s).')

        if dry_run:
            self.stdout.write(self.style.SUCCESS('Dry run completed. No changes saved.'))
        else:
            self.stdout.write(self.style.SUCCESS('Reconciliation completed successfully.'))
