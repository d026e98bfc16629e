from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField


class CustomUserManager(BaseUserManager):
    """
    Manager for CustomUser. Handles user and superuser creation using email as the unique identifier.
    """
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Email is required.")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        return self.create_user(email, password, **extra_fields)


class CustomUser(AbstractUser):
    """
    Platform user. Clients pay into escrow, freelancers are paid out of it.
    Staff and members of the Moderators group act as mediators and arbitrators.
    """
    USER_TYPE_CHOICES = (
        ('freelancer', 'Freelancer'),
        ('client', 'Client'),
    )

    user_type = models.CharField(max_length=20, choices=USER_TYPE_CHOICES, blank=True)
    email = models.EmailField(unique=True, blank=False)
    # Gateway-side destination for payouts and refunds, e.g. a Stripe Connect account
    payout_account_id = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    username = None

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['first_name', 'last_name',]

    objects = CustomUserManager()

    history = AuditlogHistoryField()

    def __str__(self):
        return self.email

    @property
    def payout_destination(self):
        return self.payout_account_id or f"user-{self.pk}"


auditlog.register(CustomUser, exclude_fields=['password', 'last_login'])
