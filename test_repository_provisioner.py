#!/usr/bin/env python3
"""
Unit tests for bringing a vault to a syncable state.

Covers repository initialization, linking a remote, and creating a GitHub
repository through a mocked HTTP transport.
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

import httpx
from git import Repo

from vaultsync.config import Config
from vaultsync.errors import (
    EncryptionUnavailable, InvalidResponse, NetworkError, NotConfigured, ProviderApiError, UnsupportedRemote
)
from vaultsync.git_sync.credentials import CredentialVault
from vaultsync.git_sync.provisioner import (
    DEFAULT_GITIGNORE, INITIAL_COMMIT_MESSAGE, RepositoryProvisioner, sanitize_repository_name
)


def github_transport(status_code=201, body=None, text=None, captured=None):
    """MockTransport answering POST /user/repos with a canned response."""
    def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=body)
    return httpx.MockTransport(handler)


class UnavailableCipher:
    """Cipher for a machine without usable secure storage."""

    def is_available(self):
        return False


def created_repository(owner="alice", name="notes"):
    return {
        "full_name": f"{owner}/{name}",
        "clone_url": f"https://github.com/{owner}/{name}.git",
        "private": True,
    }


class ProvisionerTestCase(unittest.TestCase):

    def setUp(self):
        print(f"\nSetting up test: {self._testMethodName}")
        self.temp_dir = Path(tempfile.mkdtemp())
        self.vault_dir = self.temp_dir / "My Vault"
        self.vault_dir.mkdir()
        (self.vault_dir / "welcome.md").write_text("# Welcome\n")
        self.config = Config(data_dir=self.temp_dir / "data", machine_id="machine-a")
        self.credential_vault = CredentialVault(self.config)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def provisioner(self, transport=None) -> RepositoryProvisioner:
        return RepositoryProvisioner(self.config, self.credential_vault, http_transport=transport)


class TestInitialize(ProvisionerTestCase):

    def test_creates_repository_with_initial_commit(self):
        created = self.provisioner().initialize(self.vault_dir)
        self.assertTrue(created)

        repo = Repo(self.vault_dir)
        try:
            commits = list(repo.iter_commits())
            self.assertEqual(len(commits), 1)
            self.assertEqual(commits[0].message.strip(), INITIAL_COMMIT_MESSAGE)
            self.assertEqual(repo.head.reference.name, "main")
            tracked = {item.path for item in commits[0].tree.traverse()}
            self.assertIn("welcome.md", tracked)
            self.assertIn(".gitignore", tracked)
            self.assertFalse(repo.is_dirty(untracked_files=True))
        finally:
            repo.close()

    def test_seeds_default_gitignore(self):
        self.provisioner().initialize(self.vault_dir)
        self.assertEqual((self.vault_dir / ".gitignore").read_text(), DEFAULT_GITIGNORE)

    def test_keeps_existing_gitignore(self):
        (self.vault_dir / ".gitignore").write_text("private/\n")
        self.provisioner().initialize(self.vault_dir)
        self.assertEqual((self.vault_dir / ".gitignore").read_text(), "private/\n")

    def test_ignored_metadata_is_not_committed(self):
        (self.vault_dir / ".obsidian").mkdir()
        (self.vault_dir / ".obsidian" / "workspace.json").write_text("{}")
        (self.vault_dir / ".obsidian" / "app.json").write_text("{}")

        self.provisioner().initialize(self.vault_dir)

        repo = Repo(self.vault_dir)
        try:
            tracked = {item.path for item in repo.head.commit.tree.traverse()}
        finally:
            repo.close()
        self.assertIn(".obsidian/app.json", tracked)
        self.assertNotIn(".obsidian/workspace.json", tracked)

    def test_is_idempotent(self):
        provisioner = self.provisioner()
        self.assertTrue(provisioner.initialize(self.vault_dir))
        self.assertFalse(provisioner.initialize(self.vault_dir))

        repo = Repo(self.vault_dir)
        try:
            self.assertEqual(len(list(repo.iter_commits())), 1)
        finally:
            repo.close()

    def test_empty_directory_still_gets_a_commit(self):
        empty = self.temp_dir / "empty"
        empty.mkdir()
        (empty / ".DS_Store").write_text("ignored")

        self.assertTrue(self.provisioner().initialize(empty))

        repo = Repo(empty)
        try:
            self.assertTrue(repo.head.is_valid())
        finally:
            repo.close()


class TestLinkRemote(ProvisionerTestCase):

    def test_adds_origin(self):
        provisioner = self.provisioner()
        provisioner.initialize(self.vault_dir)

        descriptor = provisioner.link_remote(self.vault_dir, "git@github.com:alice/notes.git")

        self.assertEqual(descriptor.slug, "alice/notes")
        repo = Repo(self.vault_dir)
        try:
            self.assertEqual(repo.remote("origin").url, "git@github.com:alice/notes.git")
        finally:
            repo.close()

    def test_replaces_existing_origin(self):
        provisioner = self.provisioner()
        provisioner.initialize(self.vault_dir)
        provisioner.link_remote(self.vault_dir, "https://github.com/alice/old.git")

        provisioner.link_remote(self.vault_dir, "https://github.com/alice/new.git")

        repo = Repo(self.vault_dir)
        try:
            self.assertEqual([remote.name for remote in repo.remotes], ["origin"])
            self.assertEqual(list(repo.remote("origin").urls), ["https://github.com/alice/new.git"])
        finally:
            repo.close()

    def test_unsupported_remote(self):
        provisioner = self.provisioner()
        provisioner.initialize(self.vault_dir)

        with self.assertRaises(UnsupportedRemote):
            provisioner.link_remote(self.vault_dir, "https://gitlab.com/alice/notes.git")

        repo = Repo(self.vault_dir)
        try:
            self.assertEqual(list(repo.remotes), [])
        finally:
            repo.close()

    def test_requires_repository(self):
        with self.assertRaises(NotConfigured):
            self.provisioner().link_remote(self.vault_dir, "https://github.com/alice/notes.git")


class TestCreateRemoteRepository(ProvisionerTestCase):

    def setUp(self):
        super().setUp()
        self.provisioner().initialize(self.vault_dir)

    def test_creates_links_and_stores_token(self):
        captured = []
        provisioner = self.provisioner(github_transport(body=created_repository(), captured=captured))

        descriptor = provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

        self.assertEqual(descriptor.slug, "alice/notes")
        self.assertEqual(self.credential_vault.load(descriptor), "abc")

        request = captured[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/user/repos")
        self.assertEqual(request.headers["Authorization"], "Bearer abc")
        self.assertEqual(json.loads(request.content), {"name": "notes", "private": True, "auto_init": False})

        repo = Repo(self.vault_dir)
        try:
            self.assertEqual(repo.remote("origin").url, "https://github.com/alice/notes.git")
        finally:
            repo.close()

    def test_default_name_is_vault_directory(self):
        captured = []
        provisioner = self.provisioner(
            github_transport(body=created_repository(name="My-Vault"), captured=captured)
        )

        provisioner.create_remote_repository(self.vault_dir, "abc", None, False)

        payload = json.loads(captured[0].content)
        self.assertEqual(payload["name"], "My-Vault")
        self.assertFalse(payload["private"])

    def test_provider_error_carries_message(self):
        body = {
            "message": "Repository creation failed.",
            "errors": [{"resource": "Repository", "field": "name", "message": "name already exists on this account"}],
        }
        provisioner = self.provisioner(github_transport(status_code=422, body=body))

        with self.assertRaises(ProviderApiError) as ctx:
            provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertIn("name already exists on this account", ctx.exception.message)
        self.assertIn("422", ctx.exception.message)

        repo = Repo(self.vault_dir)
        try:
            self.assertEqual(list(repo.remotes), [])
        finally:
            repo.close()

    def test_unauthorized(self):
        provisioner = self.provisioner(github_transport(status_code=401, body={"message": "Bad credentials"}))

        with self.assertRaises(ProviderApiError) as ctx:
            provisioner.create_remote_repository(self.vault_dir, "bad-token", "notes", True)
        self.assertIn("Bad credentials", ctx.exception.message)

    def test_invalid_json(self):
        provisioner = self.provisioner(github_transport(text="<html>not json</html>"))

        with self.assertRaises(InvalidResponse):
            provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

    def test_missing_clone_url(self):
        provisioner = self.provisioner(github_transport(body={"full_name": "alice/notes"}))

        with self.assertRaises(InvalidResponse):
            provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

    def test_non_github_clone_url(self):
        body = {"full_name": "alice/notes", "clone_url": "https://example.com/alice/notes.git"}
        provisioner = self.provisioner(github_transport(body=body))

        with self.assertRaises(InvalidResponse):
            provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

    def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provisioner = self.provisioner(httpx.MockTransport(handler))

        with self.assertRaises(NetworkError):
            provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

    def test_empty_token_never_calls_github(self):
        captured = []
        provisioner = self.provisioner(github_transport(body=created_repository(), captured=captured))

        with self.assertRaises(NotConfigured):
            provisioner.create_remote_repository(self.vault_dir, "  ", "notes", True)
        self.assertEqual(captured, [])

    def test_unavailable_encryption_never_calls_github(self):
        self.provisioner().link_remote(self.vault_dir, "https://github.com/alice/old.git")
        captured = []
        provisioner = RepositoryProvisioner(
            self.config,
            CredentialVault(self.config, cipher=UnavailableCipher()),
            http_transport=github_transport(body=created_repository(), captured=captured)
        )

        with self.assertRaises(EncryptionUnavailable):
            provisioner.create_remote_repository(self.vault_dir, "abc", "notes", True)

        self.assertEqual(captured, [])
        repo = Repo(self.vault_dir)
        try:
            self.assertEqual(repo.remote("origin").url, "https://github.com/alice/old.git")
        finally:
            repo.close()


class TestSanitizeRepositoryName(unittest.TestCase):

    def test_names(self):
        self.assertEqual(sanitize_repository_name("My Vault"), "My-Vault")
        self.assertEqual(sanitize_repository_name("notes"), "notes")
        self.assertEqual(sanitize_repository_name("  ~~~  "), "vault")
        self.assertEqual(sanitize_repository_name("work/notes 2024"), "work-notes-2024")


if __name__ == "__main__":
    unittest.main(verbosity=2)
