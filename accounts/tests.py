from django.test import TestCase
from django.contrib.auth import get_user_model

from core.permissions import is_school_admin, is_teacher_or_admin

User = get_user_model()


class UserManagerTests(TestCase):
    """Tests for the custom UserManager."""

    def test_create_user(self):
        """Test creating a regular user with email."""
        user = User.objects.create_user(
            email='test@example.com',
            password='testpass123'
        )
        self.assertEqual(user.email, 'test@example.com')
        self.assertTrue(user.check_password('testpass123'))
        self.assertFalse(user.is_staff)
        self.assertFalse(is_teacher_or_admin(user))
        self.assertEqual(user.role_label, 'User')

    def test_create_user_without_email_raises_error(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='testpass123')

    def test_create_superuser_without_is_staff_raises_error(self):
        with self.assertRaises(ValueError):
            User.objects.create_superuser(
                email='admin@example.com',
                password='adminpass123',
                is_staff=False
            )

    def test_create_school_admin(self):
        """School admins can lock marks and enter them."""
        user = User.objects.create_school_admin(
            email='head@school.com',
            password='testpass123'
        )
        self.assertTrue(is_school_admin(user))
        self.assertTrue(is_teacher_or_admin(user))
        self.assertEqual(user.role_label, 'School Admin')

    def test_create_teacher(self):
        """Teachers enter marks but cannot manage locks."""
        user = User.objects.create_teacher(
            email='teacher@school.com',
            password='testpass123'
        )
        self.assertTrue(is_teacher_or_admin(user))
        self.assertFalse(is_school_admin(user))
        self.assertEqual(user.role_label, 'Teacher')
        self.assertEqual(str(user), 'teacher@school.com')
