"""Management command to elevate a uid to coach or admin."""

from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError, transaction

from django_entitlements.models import PortalRole, RoleAssignment


class Command(BaseCommand):
    help = 'Assign a portal role (coach/admin) to a uid for one operator, or make it superadmin'

    def add_arguments(self, parser):
        parser.add_argument('uid', help='Identity provider uid')
        parser.add_argument('role', choices=[PortalRole.COACH, PortalRole.ADMIN])
        parser.add_argument(
            '--operator',
            default='',
            help='Operator the role applies to (required unless --superadmin)'
        )
        parser.add_argument(
            '--superadmin',
            action='store_true',
            help='Grant admin access to every operator'
        )
        parser.add_argument(
            '--revoke',
            action='store_true',
            help='Remove the assignment instead of creating it'
        )

    def handle(self, *args, **options):
        uid = options['uid']
        role = options['role']
        operator_id = options['operator']
        superadmin = options['superadmin']

        if superadmin:
            if role != PortalRole.ADMIN:
                raise CommandError('--superadmin requires the admin role')
            if operator_id:
                raise CommandError('--superadmin cannot be scoped to an operator')
        elif not operator_id:
            raise CommandError('--operator is required unless --superadmin is given')

        lookup = {'uid': uid, 'operator_id': operator_id, 'role': role}
        scope = 'all operators' if superadmin else operator_id

        if options['revoke']:
            deleted, _ = RoleAssignment.objects.filter(is_superadmin=superadmin, **lookup).delete()
            if not deleted:
                raise CommandError(f'No {role} assignment for {uid} ({scope})')
            self.stdout.write(self.style.SUCCESS(f'Revoked {role} for {uid} ({scope})'))
            return

        try:
            with transaction.atomic():
                RoleAssignment.objects.create(is_superadmin=superadmin, **lookup)
        except IntegrityError:
            self.stdout.write(f'{uid} already has {role} ({scope})')
            return

        self.stdout.write(self.style.SUCCESS(f'Assigned {role} to {uid} ({scope})'))
