from django.core.management.base import BaseCommand

from exams.grpc_server import serve


class Command(BaseCommand):
    help = "Serve the exam gRPC API"

    def add_arguments(self, parser):
        parser.add_argument("--port", type=int, default=None)
        parser.add_argument("--workers", type=int, default=10)

    def handle(self, *args, **options):
        self.stdout.write(f"Starting exam gRPC server (port {options['port'] or 'from settings'})")
        serve(port=options["port"], max_workers=options["workers"])
