from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.utils.translation import gettext_lazy as _


class UserManager(BaseUserManager):
    """
    Email-keyed manager with helpers for the staff roles that touch results.
    """

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError(_('The Email must be set'))
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        if extra_fields.get('is_staff') is not True:
            raise ValueError(_('Superuser must have is_staff=True.'))
        if extra_fields.get('is_superuser') is not True:
            raise ValueError(_('Superuser must have is_superuser=True.'))

        return self.create_user(email, password, **extra_fields)

    def create_school_admin(self, email, password=None, **extra_fields):
        """School administrators may lock and unlock marks entry."""
        extra_fields.setdefault('is_school_admin', True)
        return self.create_user(email, password, **extra_fields)

    def create_teacher(self, email, password=None, **extra_fields):
        """Teachers enter marks and view class results."""
        extra_fields.setdefault('is_teacher', True)
        return self.create_user(email, password, **extra_fields)


class User(AbstractUser):
    username = None
    email = models.EmailField(_('email address'), unique=True)

    # Roles
    is_school_admin = models.BooleanField(
        default=False,
        help_text="Can configure grading schemes and lock marks entry"
    )
    is_teacher = models.BooleanField(
        default=False,
        help_text="Can enter marks and view result summaries"
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    def __str__(self):
        return self.email

    @property
    def role_label(self):
        if self.is_superuser:
            return "Super Admin"
        if self.is_school_admin:
            return "School Admin"
        if self.is_teacher:
            return "Teacher"
        return "User"
