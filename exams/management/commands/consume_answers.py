from django.core.management.base import BaseCommand

from messaging.consumer import start_consumer


class Command(BaseCommand):
    help = "Consume save-answer messages from RabbitMQ"

    def handle(self, *args, **options):
        self.stdout.write("Waiting for answer messages. To exit press CTRL+C")
        start_consumer()
