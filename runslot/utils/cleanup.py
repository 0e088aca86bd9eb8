"""
Resource cleanup utilities.

This module tracks Docker containers started for pipeline runs, plus named
cleanup handlers, and tears them down when the daemon shuts down or the
interpreter exits.
"""

import atexit
import threading
from typing import Callable, Dict, Optional, Set

import docker
from docker.client import DockerClient
from docker.errors import DockerException, NotFound

from runslot.utils.logging import get_logger

log = get_logger("cleanup")

class CleanupManager:
    """
    Singleton manager for automatic resource cleanup.

    Cleanup runs from an atexit hook and whenever cleanup_all() is called
    explicitly, e.g. by the daemon's signal handler.
    """

    _instance: Optional["CleanupManager"] = None
    _lock = threading.Lock()

    def __init__(self):
        """
        Create empty registries. Use instance() instead of calling this directly.
        """
        self._containers: Dict[str, str] = {}  # container_id -> name
        self._cleanup_handlers: Dict[str, Callable[[], None]] = {}
        self._docker_client: Optional[DockerClient] = None
        self._registry_lock = threading.Lock()
        # Prevents recursive cleanup calls
        self._shutting_down = False

    @classmethod
    def instance(cls) -> "CleanupManager":
        """
        Get the singleton instance of CleanupManager.

        Creates the instance on first call and registers the atexit hook,
        using double-checked locking.

        :return: The singleton CleanupManager instance.
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
                    atexit.register(cls._instance.cleanup_all)
        return cls._instance

    def _get_docker_client(self) -> Optional[DockerClient]:
        """
        Lazily create and cache a Docker client.

        :return: Docker client instance, or None if Docker is unavailable.
        """
        if self._docker_client is None:
            try:
                self._docker_client = docker.from_env()
            except DockerException as e:
                log.warning(f"Could not create Docker client: {e}")
        return self._docker_client

    def register_container(self, container_id: str, name: str = None) -> None:
        """
        Register a Docker container to be stopped and removed on cleanup.

        :param container_id: Docker container ID to register.
        :param name: Optional human-readable name for logging purposes.
        """
        with self._registry_lock:
            self._containers[container_id] = name or container_id[:12]
        log.debug(f"Registered container for cleanup: {name or container_id[:12]}")

    def unregister_container(self, container_id: str) -> None:
        """
        Unregister a Docker container from automatic cleanup.

        :param container_id: Docker container ID to unregister.
        """
        with self._registry_lock:
            self._containers.pop(container_id, None)
        log.debug(f"Unregistered container: {container_id[:12]}")

    def register_handler(self, name: str, handler: Callable[[], None]) -> None:
        """
        Register a custom cleanup handler, run after containers are stopped.

        :param name: Unique identifier for the cleanup handler.
        :param handler: Callable that performs cleanup (takes no arguments).
        """
        self._cleanup_handlers[name] = handler
        log.debug(f"Registered cleanup handler: {name}")

    def unregister_handler(self, name: str) -> None:
        """
        Unregister a custom cleanup handler. Safe if it doesn't exist.

        :param name: Identifier of the cleanup handler to remove.
        """
        self._cleanup_handlers.pop(name, None)

    def cleanup_all(self) -> None:
        """
        Run custom handlers, then stop and remove all registered containers.

        Handler failures are logged and do not stop the remaining cleanup.
        """
        if self._shutting_down:
            return
        self._shutting_down = True

        try:
            for name, handler in list(self._cleanup_handlers.items()):
                try:
                    log.debug(f"Running cleanup handler: {name}")
                    handler()
                except Exception as e:
                    log.warning(f"Cleanup handler '{name}' failed: {e}")
            self._cleanup_handlers.clear()

            with self._registry_lock:
                containers = dict(self._containers)
                self._containers.clear()

            if containers:
                log.info(f"Cleaning up {len(containers)} container(s)...")
                client = self._get_docker_client()
                if client:
                    for cid, name in containers.items():
                        self._stop_container(client, cid, name)
        finally:
            self._shutting_down = False

    def _stop_container(self, client: DockerClient, container_id: str, name: str) -> None:
        """
        Stop and remove a single Docker container.

        :param client: Docker client instance.
        :param container_id: ID of the container to stop and remove.
        :param name: Name used in log messages.
        """
        try:
            container = client.containers.get(container_id)
            container.stop(timeout=10)
            container.remove(force=True)
            log.info(f"Cleaned up container: {name}")
        except NotFound:
            log.debug(f"Container already removed: {name}")
        except DockerException as e:
            log.debug(f"Could not cleanup container {name}: {e}")

    @property
    def active_containers(self) -> Set[str]:
        """
        Copy of the registered container IDs.
        """
        with self._registry_lock:
            return set(self._containers)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._containers)

def register_container(container_id: str, name: str = None) -> None:
    """
    Register a container for automatic cleanup on the global manager.
    """
    CleanupManager.instance().register_container(container_id, name)

def unregister_container(container_id: str) -> None:
    """
    Unregister a container from automatic cleanup on the global manager.
    """
    CleanupManager.instance().unregister_container(container_id)

def register_cleanup_handler(name: str, handler: Callable[[], None]) -> None:
    """
    Register a custom cleanup handler on the global manager.
    """
    CleanupManager.instance().register_handler(name, handler)

def cleanup_all() -> None:
    """
    Manually trigger cleanup of all resources.
    """
    CleanupManager.instance().cleanup_all()
