"""
Management command to seed a superadmin and a demo company with its admin
"""
import os

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from stockly.core.models import Company, Membership, User


class Command(BaseCommand):
    help = "Creates (or updates) the superadmin, a demo company and its admin user"

    def add_arguments(self, parser):
        parser.add_argument('--superadmin-username', default=os.getenv('SEED_SUPERADMIN_USERNAME', 'superadmin'))
        parser.add_argument('--superadmin-password', default=os.getenv('SEED_SUPERADMIN_PASSWORD'))
        parser.add_argument('--admin-username', default=os.getenv('SEED_ADMIN_USERNAME', 'admin'))
        parser.add_argument('--admin-password', default=os.getenv('SEED_ADMIN_PASSWORD'))
        parser.add_argument('--company-name', default=os.getenv('SEED_COMPANY_NAME', 'Demo Company'))
        parser.add_argument('--company-slug', default=os.getenv('SEED_COMPANY_SLUG', 'demo'))

    def _upsert_user(self, username, password, system_role):
        user, created = User.objects.get_or_create(username=username, defaults={'system_role': system_role})
        user.system_role = system_role
        user.is_active = True
        user.set_password(password)
        user.save()
        label = "Created" if created else "Updated"
        self.stdout.write(self.style.SUCCESS(f"  ✓ {label} user: {username} ({system_role})"))
        return user

    def handle(self, *args, **options):
        superadmin_password = options['superadmin_password']
        admin_password = options['admin_password']
        if not superadmin_password or not admin_password:
            raise CommandError(
                "Set SEED_SUPERADMIN_PASSWORD and SEED_ADMIN_PASSWORD "
                "(or pass --superadmin-password and --admin-password)."
            )

        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(self.style.SUCCESS("SEEDING DEMO DATA"))
        self.stdout.write(self.style.SUCCESS("=" * 80))

        with transaction.atomic():
            self._upsert_user(options['superadmin_username'], superadmin_password, User.SYSTEM_ROLE_SUPERADMIN)

            company, created = Company.objects.get_or_create(
                slug=options['company_slug'],
                defaults={'name': options['company_name']},
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f"  ✓ Created company: {company.name}"))
            else:
                self.stdout.write(self.style.WARNING(f"  ⊘ Skipped (already exists): {company.name}"))

            admin = self._upsert_user(options['admin_username'], admin_password, User.SYSTEM_ROLE_ADMIN)
            Membership.objects.update_or_create(
                user=admin,
                defaults={
                    'company': company,
                    'role': Membership.ROLE_ADMIN,
                    'status': Membership.STATUS_ACTIVE,
                },
            )
            self.stdout.write(self.style.SUCCESS(f"  ✓ {admin.username} is ADMIN of {company.slug}"))

        self.stdout.write(self.style.SUCCESS("=" * 80))
