"""
Management command to deliver queued notifications (outbox worker).
"""
import time

from django.core.management.base import BaseCommand

from commerce.infra.dispatcher import NotificationDispatcher


class Command(BaseCommand):
    help = 'Deliver pending notifications from the outbox'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=100,
            help='Maximum number of notifications to deliver in one run',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Run in loop (for production)',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=3,
            help='Interval between loops in seconds',
        )

    def handle(self, *args, **options):
        limit = options['limit']
        interval = options['interval']

        dispatcher = NotificationDispatcher()

        if not options['loop']:
            delivered = dispatcher.dispatch_pending(limit=limit)
            self.stdout.write(self.style.SUCCESS(f'Delivered {delivered} notifications'))
            return

        self.stdout.write(f'Starting dispatcher in loop mode (interval: {interval}s)')
        while True:
            try:
                delivered = dispatcher.dispatch_pending(limit=limit)
                if delivered > 0:
                    self.stdout.write(self.style.SUCCESS(f'Delivered {delivered} notifications'))
                time.sleep(interval)
            except KeyboardInterrupt:
                self.stdout.write(self.style.WARNING('Stopped by user'))
                break
