from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType
from django.contrib.auth import get_user_model

from accounts.roles import MODERATORS_GROUP
from disputes.models import Dispute, DisputeEvidence, DisputeMessage

User = get_user_model()


class Command(BaseCommand):
    help = "Creates the Moderators group whose members may mediate and arbitrate disputes. Optionally assign a user."

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, help='Email of user to assign to the Moderators group')

    def handle(self, *args, **options):
        group, created = Group.objects.get_or_create(name=MODERATORS_GROUP)

        if created:
            self.stdout.write(self.style.SUCCESS(f"Created group: {MODERATORS_GROUP}"))
        else:
            self.stdout.write(f"Group '{MODERATORS_GROUP}' already exists.")

        granted = []
        for model in (Dispute, DisputeEvidence, DisputeMessage):
            content_type = ContentType.objects.get_for_model(model)
            name = model._meta.model_name
            codenames = [f"view_{name}", f"change_{name}"]
            perms = Permission.objects.filter(content_type=content_type, codename__in=codenames)
            group.permissions.add(*perms)
            granted.extend(perm.codename for perm in perms)

        self.stdout.write(self.style.SUCCESS(f"Granted {', '.join(sorted(granted))} to {MODERATORS_GROUP}."))

        email = options['email']
        if email:
            try:
                user = User.objects.get(email=email)
            except User.DoesNotExist:
                self.stdout.write(self.style.ERROR(f"User with email {email} does not exist."))
                return
            user.groups.add(group)
            self.stdout.write(self.style.SUCCESS(f"User {email} added to {MODERATORS_GROUP}."))
