from django.conf import settings


def pytest_configure(config):
    # Fast hashing for test-created API keys; PBKDF2 makes WebSocket auth
    # exceed the test communicator's default timeout.
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
