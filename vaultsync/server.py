"""Main server implementation for the VaultSync MCP server."""

import asyncio
import logging
import sys
import threading
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, load_configuration, validate_configuration
from .errors import ErrorCode, NotConfigured, error_handler
from .git_sync import VaultSyncManager, VaultSession, SyncResult, open_vault


def setup_logging(config: Config) -> None:
    """Setup logging configuration with structured logging."""
    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    loggers = [
        'vaultsync.init',
        'vaultsync.server',
        'vaultsync.git_sync',
        'vaultsync.credentials',
        'vaultsync.error_handler'
    ]

    formatter = StructuredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    for logger_name in loggers:
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, config.log_level))

        # stdout carries the MCP stdio protocol, so logs go to stderr
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.propagate = False


class ServerState:
    """
    Caller-side policy for the MCP surface.

    Holds the single active vault and rejects a second sync for a vault that
    already has one in flight. The engine itself keeps no such state.
    """

    def __init__(self, manager: VaultSyncManager, vault: Optional[VaultSession] = None):
        self.manager = manager
        self.vault = vault
        self._syncing = set()
        self._lock = threading.Lock()

    def require_vault(self) -> VaultSession:
        if self.vault is None:
            raise NotConfigured("No vault is open; call vault_open first")
        return self.vault

    def begin_sync(self, vault: VaultSession) -> bool:
        with self._lock:
            if vault.key in self._syncing:
                return False
            self._syncing.add(vault.key)
            return True

    def end_sync(self, vault: VaultSession) -> None:
        with self._lock:
            self._syncing.discard(vault.key)

    def is_syncing(self, vault: VaultSession) -> bool:
        with self._lock:
            return vault.key in self._syncing


def _no_vault(operation: str, error: Exception) -> dict:
    return error_handler.handle_error(error, operation).to_dict()


def register_tools(server: FastMCP, state: ServerState) -> None:
    """Register MCP tools with the server instance."""

    @server.tool()
    async def vault_open(path: str) -> dict:
        """
        Select the vault directory that the other sync tools act on.

        Args:
            path: Absolute path of the vault (notes) directory

        Returns:
            The resolved vault path and its sync configuration
        """
        try:
            vault = open_vault(path)
        except Exception as e:
            return error_handler.handle_error(e, "vault_open", {"path": path}).to_dict()

        state.vault = vault
        logging.getLogger('vaultsync.server').info(f"📂 Active vault is now {vault.root}")
        config = await asyncio.to_thread(state.manager.get_sync_config, vault)
        return {"success": True, "vault": str(vault.root), "sync": config.to_dict()}

    @server.tool()
    async def sync_config() -> dict:
        """
        Report whether the active vault can be synced, and why not if it cannot.

        Returns:
            enabled, is_repo, has_token, remote_url, repo_slug, branch and reason
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_config", e)
        result = await asyncio.to_thread(state.manager.get_sync_config, vault)
        return result.to_dict()

    @server.tool()
    async def sync_status() -> dict:
        """
        Report uncommitted changes in the active vault and the last successful sync.

        This never contacts the remote.
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_status", e)
        result = await asyncio.to_thread(state.manager.get_sync_status, vault)
        status = result.to_dict()
        status["syncing"] = state.is_syncing(vault)
        return status

    @server.tool()
    async def sync_init() -> dict:
        """
        Put the active vault under version control with a default .gitignore and an initial commit.

        Safe to call on a vault that is already a repository.
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_init", e)
        result = await asyncio.to_thread(state.manager.init_repository, vault)
        return result.to_dict()

    @server.tool()
    async def sync_set_remote(url: str) -> dict:
        """
        Link the active vault to an existing GitHub repository.

        Args:
            url: HTTPS or SSH GitHub URL, e.g. https://github.com/owner/notes.git
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_set_remote", e)
        result = await asyncio.to_thread(state.manager.set_remote, vault, url)
        return result.to_dict()

    @server.tool()
    async def sync_create_repo(token: str, name: Optional[str] = None, private: bool = True) -> dict:
        """
        Create a new GitHub repository for the active vault, link it and store the token.

        Args:
            token: GitHub personal access token with repository creation rights
            name: Repository name; defaults to the vault directory name
            private: Whether the repository is private
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_create_repo", e)
        result = await asyncio.to_thread(state.manager.create_remote_repository, vault, token, name, private)
        return result.to_dict()

    @server.tool()
    async def sync_set_token(token: str) -> dict:
        """
        Store (or rotate) the GitHub token for the active vault's remote.

        The token is encrypted on disk and never returned by any tool.
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_set_token", e)
        result = await asyncio.to_thread(state.manager.set_token, vault, token)
        return result.to_dict()

    @server.tool()
    async def sync_clear_token() -> dict:
        """Remove the stored token for the active vault's remote."""
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_clear_token", e)
        result = await asyncio.to_thread(state.manager.clear_token, vault)
        return result.to_dict()

    @server.tool()
    async def sync_run() -> dict:
        """
        Commit local changes, rebase onto the remote and push.

        Returns:
            The ordered steps performed, or a typed error. A failed sync never
            leaves the vault in the middle of a rebase.
        """
        try:
            vault = state.require_vault()
        except NotConfigured as e:
            return _no_vault("sync_run", e)

        if not state.begin_sync(vault):
            return SyncResult(
                ok=False,
                error_code=ErrorCode.SYNC_BUSY,
                error="A sync is already running for this vault"
            ).to_dict()

        try:
            result = await asyncio.to_thread(state.manager.run_sync, vault)
        finally:
            state.end_sync(vault)
        return result.to_dict()

    init_logger = logging.getLogger('vaultsync.init')
    init_logger.info("MCP tools registered successfully")


def initialize_server() -> FastMCP:
    """Initialize MCP server with stdio transport for local-only operation."""
    try:
        server_config = load_configuration()
        validation_issues = validate_configuration(server_config)

        setup_logging(server_config)
        init_logger = logging.getLogger('vaultsync.init')

        if validation_issues:
            for issue in validation_issues:
                if issue.startswith("ERROR:"):
                    init_logger.error(issue[7:])  # Remove "ERROR: " prefix
                elif issue.startswith("WARNING:"):
                    init_logger.warning(issue[9:])  # Remove "WARNING: " prefix

            error_count = sum(1 for issue in validation_issues if issue.startswith("ERROR:"))
            if error_count > 0:
                init_logger.critical(f"Server startup failed due to {error_count} configuration error(s)")
                sys.exit(1)

        init_logger.info("Configuration loaded successfully")

        manager = VaultSyncManager(server_config)
        state = ServerState(manager)

        if server_config.vault_path:
            try:
                state.vault = open_vault(server_config.vault_path)
                init_logger.info(f"Active vault: {state.vault.root}")
            except NotConfigured as e:
                init_logger.warning(f"Configured vault ignored: {e.message}")

        init_logger.info("Initializing MCP server with stdio transport")
        server = FastMCP(
            "VaultSync",
            log_level=server_config.log_level
        )

        init_logger.info("Registering MCP tools")
        register_tools(server, state)

        init_logger.info("VaultSync MCP server initialized successfully")
        return server

    except Exception as e:
        if 'init_logger' not in locals():
            logging.basicConfig(level=logging.ERROR)
            init_logger = logging.getLogger('vaultsync.init')

        init_logger.critical(f"Server initialization failed: {e}", exc_info=True)
        raise


def main():
    """Main entry point for the VaultSync server with stdio transport."""
    startup_logger = None

    try:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        startup_logger = logging.getLogger('vaultsync.startup')

        startup_logger.info("=" * 60)
        startup_logger.info("VaultSync MCP Server")
        startup_logger.info("=" * 60)

        python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        if sys.version_info < (3, 10):
            startup_logger.error(f"Python 3.10+ required, found {python_version}")
            sys.exit(1)

        startup_logger.info(f"Python version: {python_version} ✓")

        server = initialize_server()

        startup_logger.info("Server startup completed successfully!")
        startup_logger.info("Ready to accept MCP connections via stdio transport")
        server.run(transport="stdio")

    except KeyboardInterrupt:
        if startup_logger:
            startup_logger.info("Server stopped by user (Ctrl+C)")
        else:
            print("\nServer stopped by user", file=sys.stderr)
    except SystemExit:
        raise
    except Exception as e:
        if startup_logger:
            startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        else:
            print(f"CRITICAL: Server failed to start: {e}", file=sys.stderr)
        sys.exit(1)
