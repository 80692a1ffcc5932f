"""
This file contains the app configuration for the users app.

The users app owns the persistent attendance data: profiles with the face
enrollment flag, encrypted face embeddings, attendance events and their audit
trail. It also hosts the login lockout guard.
"""
from django.apps import AppConfig


class UsersConfig(AppConfig):
    """
    Configuration class for the users app.

    Django uses this class to register the app's models and admin classes.
    """
    name = 'users'
    verbose_name = 'Users and attendance records'
