"""
Test suite for the project settings.

The settings module is re-evaluated under a controlled environment so both
database branches and the mail defaults can be checked from one test run.
"""

import importlib
import os
from unittest.mock import patch

from django.conf import settings
from django.test import SimpleTestCase

from campus_marketplace import settings as project_settings

ENVIRONMENT_KEYS = ('DB_ENGINE', 'DB_NAME', 'EMAIL_BACKEND')


def load_project_settings(**env):
    """Re-evaluate campus_marketplace.settings with ``env`` as the only overrides."""
    environ = {key: value for key, value in os.environ.items() if key not in ENVIRONMENT_KEYS}
    environ.update(env)
    with patch.dict(os.environ, environ, clear=True):
        return importlib.reload(project_settings)


class DatabaseSettingsTestCase(SimpleTestCase):

    @classmethod
    def tearDownClass(cls):
        importlib.reload(project_settings)
        super().tearDownClass()

    def test_mysql_is_the_default_engine(self):
        database = load_project_settings().DATABASES['default']

        self.assertEqual(database['ENGINE'], 'django.db.backends.mysql')
        self.assertEqual(database['OPTIONS']['charset'], 'utf8mb4')
        self.assertIn('STRICT_TRANS_TABLES', database['OPTIONS']['init_command'])
        self.assertIn('connect_timeout', database['OPTIONS'])
        self.assertFalse(database['ATOMIC_REQUESTS'])

    def test_sqlite_writers_wait_for_the_lock(self):
        """Concurrent writers must queue rather than fail with "database is locked"."""
        database = load_project_settings(DB_ENGINE='sqlite').DATABASES['default']

        self.assertEqual(database['ENGINE'], 'django.db.backends.sqlite3')
        self.assertEqual(database['OPTIONS']['transaction_mode'], 'IMMEDIATE')
        self.assertGreater(database['OPTIONS']['timeout'], 0)

    def test_test_database_is_a_file_with_queued_writers(self):
        database = settings.DATABASES['default']

        self.assertEqual(database['OPTIONS']['transaction_mode'], 'IMMEDIATE')
        self.assertNotIn('memory', str(database['TEST']['NAME']))


class EmailSettingsTestCase(SimpleTestCase):

    @classmethod
    def tearDownClass(cls):
        importlib.reload(project_settings)
        super().tearDownClass()

    def test_default_backend_does_not_print_messages(self):
        """Delivery codes travel in the body, so the default must not write them to stdout."""
        backend = load_project_settings().EMAIL_BACKEND

        self.assertEqual(backend, 'django.core.mail.backends.locmem.EmailBackend')

    def test_backend_from_environment(self):
        backend = load_project_settings(
            EMAIL_BACKEND='django.core.mail.backends.smtp.EmailBackend'
        ).EMAIL_BACKEND

        self.assertEqual(backend, 'django.core.mail.backends.smtp.EmailBackend')
