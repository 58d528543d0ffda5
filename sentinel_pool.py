"""
Sentinel Pool Module

Provides a bounded, Sentinel-aware pool of Redis connections with:
- Master discovery across a set of Sentinel nodes
- Transparent re-pointing on ``+switch-master`` failover events
- Credential rotation without recreating the pool
- Blocking, blocking-with-timeout and fail-fast exhaustion policies

"""

import logging
import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)
import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff, NoBackoff
from redis.exceptions import (
    AuthenticationError,
    ConnectionError,
    RedisError,
    ResponseError,
    TimeoutError,
)

SWITCH_MASTER_CHANNEL = "+switch-master"


class SentinelPoolError(RedisError):
    """Generic client error: the network path worked but the request was rejected."""


class MasterNotMonitoredError(SentinelPoolError):
    pass


class CredentialsRejectedError(SentinelPoolError):
    pass


class PoolExhaustedError(SentinelPoolError):
    pass


class PoolClosedError(SentinelPoolError):
    pass


class SentinelsUnreachableError(ConnectionError):
    pass


@dataclass(frozen=True)
class HostAndPort:
    """A ``(host, port)`` network endpoint."""
    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, value: Union["HostAndPort", str, Tuple[str, int]]) -> "HostAndPort":
        """
        Build an endpoint from ``"host:port"``, ``"[ipv6]:port"`` or a
        ``(host, port)`` pair.

        Raises:
            ValueError: If the value cannot be interpreted as an endpoint.
        """
        if isinstance(value, HostAndPort):
            return value
        if isinstance(value, str):
            host, sep, port = value.strip().rpartition(":")
            if not sep or not host:
                raise ValueError(f"Invalid endpoint format: {value!r}")
            if host.startswith("[") and host.endswith("]"):
                host = host[1:-1]
            value = (host, port)
        try:
            host, port = value
            return cls(str(host), int(port))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid endpoint format: {value!r}") from None


@dataclass(frozen=True)
class Credentials:
    """Authentication and session settings applied to every new connection."""
    username: Optional[str] = None
    password: Optional[str] = None
    db: int = 0
    client_name: Optional[str] = None


@dataclass
class PoolConfig:
    """
    Sizing and health-check policy of the bounded connection pool.

    Attributes:
        max_total: Maximum connections owned by the pool (negative: no limit)
        max_idle: Maximum idle connections kept on return (negative: no limit)
        block_when_exhausted: Wait for a connection instead of failing fast
        max_wait: Seconds to wait when exhausted; None waits forever
        lifo: Reuse the most recently returned connection first
        test_on_borrow: PING idle connections before handing them out
        test_on_return: PING connections when they are returned
        test_while_idle: PING idle connections during eviction runs
        time_between_eviction_runs: Seconds between evictor runs; None disables it
        min_evictable_idle_time: Idle seconds after which the evictor drops a connection
    """
    max_total: int = 8
    max_idle: int = 8
    block_when_exhausted: bool = True
    max_wait: Optional[float] = None
    lifo: bool = True
    test_on_borrow: bool = False
    test_on_return: bool = False
    test_while_idle: bool = False
    time_between_eviction_runs: Optional[float] = None
    min_evictable_idle_time: float = 1800.0


@dataclass
class SentinelPoolConfig:
    """
    Configuration for a Sentinel-backed pool.

    Attributes:
        master_name: Name of the master group monitored by Sentinel
        sentinels: Sentinel endpoints as ``HostAndPort``, ``"host:port"`` or tuples
        pool: Bounded pool policy
        connect_timeout: Timeout for establishing master connections
        socket_timeout: Timeout for commands on master connections
        username: Optional ACL username for the master
        password: Optional password for the master
        db: Database index selected on every connection
        client_name: Name set with CLIENT SETNAME on every connection
        sentinel_username: Optional ACL username for the Sentinel nodes
        sentinel_password: Optional password for the Sentinel nodes
                           (separate from data node password)
        sentinel_client_name: Name announced to the Sentinel nodes
        sentinel_connect_timeout: Connect timeout for Sentinel connections
        sentinel_socket_timeout: Command timeout for discovery queries
        subscribe_retry_delay: First delay before resubscribing to a lost Sentinel
        subscribe_retry_max_delay: Ceiling of the resubscription backoff
        decode_responses: Decode replies to ``str``
    """
    master_name: str = "mymaster"
    sentinels: List[HostAndPort] = field(default_factory=list)
    pool: PoolConfig = field(default_factory=PoolConfig)
    connect_timeout: float = 2.0
    socket_timeout: float = 2.0
    username: Optional[str] = None
    password: Optional[str] = None
    db: int = 0
    client_name: Optional[str] = None
    sentinel_username: Optional[str] = None
    sentinel_password: Optional[str] = None
    sentinel_client_name: Optional[str] = None
    # Sentinel discovery protocol timeouts
    sentinel_connect_timeout: float = 1.0
    sentinel_socket_timeout: float = 1.0
    subscribe_retry_delay: float = 0.5
    subscribe_retry_max_delay: float = 5.0
    decode_responses: bool = True

    def __post_init__(self) -> None:
        self.sentinels = [HostAndPort.parse(s) for s in self.sentinels]

    def sentinel_client(
        self,
        sentinel: HostAndPort,
        socket_timeout: Optional[float] = None,
    ) -> redis.Redis:
        """Create a client for one Sentinel node."""
        return redis.Redis(
            host=sentinel.host,
            port=sentinel.port,
            username=self.sentinel_username,
            password=self.sentinel_password,
            client_name=self.sentinel_client_name,
            socket_connect_timeout=self.sentinel_connect_timeout,
            socket_timeout=socket_timeout,
            decode_responses=True,
        )


class HeldConnectionPool:
    """
    Stands in for a client's private connection pool inside a pipeline.

    ``get_connection`` returns the connection the client already holds and
    ``release`` keeps it, so pipelines and WATCH/MULTI run on the pooled
    connection instead of opening another socket.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    def __getattr__(self, name: str) -> Any:
        return getattr(self._client.connection_pool, name)

    async def get_connection(self, *args, **kwargs):
        return self._client.connection

    async def release(self, connection) -> None:
        pass


class PooledConnection:
    """
    A Redis connection owned by a pool.

    Commands are forwarded to the wrapped ``redis.asyncio.Redis`` client.
    ``close()`` hands the connection back to its pool instead of closing
    the transport, so it can be used as ``async with``::

        async with await pool.get_resource() as conn:
            await conn.set("foo", "bar")
    """

    def __init__(
        self,
        client: redis.Redis,
        address: HostAndPort,
        credentials: Credentials,
    ):
        self.client = client
        self.address = address
        self.credentials = credentials
        self.created_at = time.monotonic()
        self.returned_at = self.created_at
        self._owner: Optional["ResourcePool"] = None
        self._pipelines: List[Any] = []

    def __getattr__(self, name: str) -> Any:
        if name == "client":
            raise AttributeError(name)
        return getattr(self.client, name)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(address={self.address})>"

    @property
    def is_broken(self) -> bool:
        """True when the underlying transport is gone."""
        connection = self.client.connection
        return connection is None or not connection.is_connected

    @property
    def checked_out(self) -> bool:
        return self._owner is not None

    def pipeline(self, transaction: bool = True, shard_hint: Optional[str] = None):
        """
        Create a pipeline that runs on this connection.

        Pending commands and WATCHes are discarded when the connection is
        returned to its pool.
        """
        pipe = self.client.pipeline(transaction=transaction, shard_hint=shard_hint)
        pipe.connection_pool = HeldConnectionPool(self.client)
        self._pipelines.append(pipe)
        return pipe

    async def reset_state(self) -> None:
        """Discard pipelines and WATCHes left over by the last borrower."""
        pipelines, self._pipelines = self._pipelines, []
        for pipe in pipelines:
            await pipe.reset()

    async def close(self) -> None:
        """Return the connection to its pool. Calling it twice is a no-op."""
        owner, self._owner = self._owner, None
        if owner is not None:
            await owner.return_object(self)

    async def __aenter__(self) -> "PooledConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class ConnectionFactory:
    """
    Creates, validates and destroys connections to the current master.

    The target address is set by the owning ``SentinelPool``; credentials
    may be swapped at any time and apply to connections created or
    validated afterwards.
    """

    def __init__(
        self,
        address: Optional[HostAndPort] = None,
        connect_timeout: float = 2.0,
        socket_timeout: float = 2.0,
        username: Optional[str] = None,
        password: Optional[str] = None,
        db: int = 0,
        client_name: Optional[str] = None,
        decode_responses: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.decode_responses = decode_responses
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._address = address
        self._credentials = Credentials(username, password, db, client_name)

    @property
    def address(self) -> Optional[HostAndPort]:
        return self._address

    @address.setter
    def address(self, address: HostAndPort) -> None:
        self._address = address

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    def set_password(self, password: Optional[str]) -> None:
        self._credentials = replace(self._credentials, password=password)

    def set_username(self, username: Optional[str]) -> None:
        self._credentials = replace(self._credentials, username=username)

    def set_database(self, db: int) -> None:
        self._credentials = replace(self._credentials, db=db)

    def set_client_name(self, client_name: Optional[str]) -> None:
        self._credentials = replace(self._credentials, client_name=client_name)

    async def make_object(self) -> PooledConnection:
        """
        Open an authenticated connection to the current master.

        Raises:
            ConnectionError: If the master cannot be reached in time
            CredentialsRejectedError: If the master rejects the credentials
            SentinelPoolError: If no master is known or the server rejects
                the session setup (e.g. an invalid database index)
        """
        address, credentials = self._address, self._credentials
        if address is None:
            raise SentinelPoolError("Connection factory has no master address")

        # no implicit reconnects: broken connections are replaced by the pool
        client = redis.Redis(
            host=address.host,
            port=address.port,
            username=credentials.username,
            password=credentials.password,
            db=credentials.db,
            client_name=credentials.client_name,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.connect_timeout,
            single_connection_client=True,
            decode_responses=self.decode_responses,
            retry=Retry(NoBackoff(), 0),
        )
        try:
            await client.initialize()
        except AuthenticationError as e:
            await self._close_client(client, address)
            self.logger.error(f"Authentication to master {address} rejected: {e}")
            raise CredentialsRejectedError(
                f"Master {address} rejected the configured credentials: {e}"
            ) from e
        except ConnectionError:
            await self._close_client(client, address)
            raise
        except TimeoutError as e:
            await self._close_client(client, address)
            raise ConnectionError(f"Timed out connecting to master {address}") from e
        except ResponseError as e:
            await self._close_client(client, address)
            raise SentinelPoolError(f"Master {address} rejected session setup: {e}") from e
        except BaseException:
            await self._close_client(client, address)
            raise

        return PooledConnection(client, address, credentials)

    def is_current(self, connection: PooledConnection) -> bool:
        """Cheap check: same master, same credentials, live transport."""
        return (
            connection.address == self._address
            and connection.credentials == self._credentials
            and not connection.is_broken
        )

    async def validate_object(self, connection: PooledConnection) -> bool:
        """
        Health-check a connection.

        Returns:
            True if the connection is current and answers PING, False otherwise
        """
        if not self.is_current(connection):
            return False
        try:
            return bool(await connection.client.ping())
        except (RedisError, OSError) as e:
            self.logger.debug(f"Validation of {connection!r} failed: {type(e).__name__}: {e}")
            return False

    async def destroy_object(self, connection: PooledConnection) -> None:
        """Close the transport of a connection. Never raises."""
        await self._close_client(connection.client, connection.address)

    async def _close_client(self, client: redis.Redis, address: HostAndPort) -> None:
        try:
            await client.aclose()
        except Exception as e:
            self.logger.warning(
                f"Error closing connection to {address}: {type(e).__name__}: {e}"
            )


class ResourcePool:
    """
    A bounded pool of ``PooledConnection`` objects.

    Creation, validation and destruction are delegated to the factory.
    The pool belongs to the event loop it is used from; all bookkeeping
    happens between awaits, so one idle connection is never handed to two
    borrowers.
    """

    def __init__(
        self,
        factory: ConnectionFactory,
        config: Optional[PoolConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.factory = factory
        self.config = config or PoolConfig()
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self._idle: Deque[PooledConnection] = deque()
        self._active: Set[PooledConnection] = set()
        # created or under test, not yet idle nor handed out
        self._in_transit = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._closed = False
        self._evictor: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def num_idle(self) -> int:
        return len(self._idle)

    @property
    def num_active(self) -> int:
        return len(self._active)

    @property
    def num_waiters(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def start(self) -> None:
        """Start the background evictor if one is configured."""
        interval = self.config.time_between_eviction_runs
        if interval is None or self._evictor is not None or self._closed:
            return
        self._evictor = asyncio.create_task(self._run_evictor(interval))

    async def borrow(self) -> PooledConnection:
        """
        Check a connection out of the pool.

        Raises:
            PoolExhaustedError: If capacity is full and waiting is disabled
                or timed out
            PoolClosedError: If the pool is closed
        """
        loop = asyncio.get_running_loop()
        deadline = None
        if self.config.max_wait is not None:
            deadline = loop.time() + self.config.max_wait

        while True:
            if self._closed:
                raise PoolClosedError("Pool is closed")

            if self._idle:
                connection = self._idle.popleft()
                if await self._activate(connection):
                    return connection
                continue

            if self._has_capacity():
                connection = await self._create()
                if connection is not None:
                    return connection
                continue

            if not self.config.block_when_exhausted:
                raise PoolExhaustedError("Pool exhausted")
            await self._wait(loop, deadline)

    async def return_object(self, connection: PooledConnection) -> None:
        """Take a connection back; it is kept idle or destroyed."""
        if connection not in self._active:
            return
        connection._owner = None

        keep = False
        try:
            keep = not self._closed and await self._passivate(connection)
        finally:
            # also reached when the return is cancelled mid-reset
            self._active.discard(connection)
            self._wake_waiter()
            if keep and not self._closed and self._idle_has_room():
                connection.returned_at = time.monotonic()
                if self.config.lifo:
                    self._idle.appendleft(connection)
                else:
                    self._idle.append(connection)
            else:
                await self.factory.destroy_object(connection)

    async def invalidate(self, connection: PooledConnection) -> None:
        """Destroy a checked-out connection instead of returning it."""
        if connection not in self._active:
            return
        connection._owner = None
        self._active.discard(connection)
        self._wake_waiter()
        await self.factory.destroy_object(connection)

    async def clear(self) -> int:
        """Destroy every idle connection; checked-out ones are untouched."""
        idle = list(self._idle)
        self._idle.clear()
        for _ in idle:
            self._wake_waiter()
        for connection in idle:
            await self.factory.destroy_object(connection)
        if idle:
            self.logger.info(f"Cleared {len(idle)} idle connection(s)")
        return len(idle)

    async def evict(self) -> None:
        """Run one eviction pass over the idle connections."""
        now = time.monotonic()
        for connection in list(self._idle):
            if connection not in self._idle:
                continue
            idle_for = now - connection.returned_at
            if idle_for < self.config.min_evictable_idle_time and not self.config.test_while_idle:
                continue

            self._idle.remove(connection)
            self._in_transit += 1
            try:
                valid = (
                    idle_for < self.config.min_evictable_idle_time
                    and await self.factory.validate_object(connection)
                )
            finally:
                self._in_transit -= 1
            if valid and not self._closed:
                self._requeue(connection)
            else:
                self.logger.debug(f"Evicting idle {connection!r}")
                await self.factory.destroy_object(connection)
            self._wake_waiter()

    async def close(self) -> None:
        """Close the pool: idle connections now, checked-out ones on return."""
        if self._closed:
            return
        self._closed = True

        if self._evictor is not None:
            self._evictor.cancel()
            with suppress(asyncio.CancelledError):
                await self._evictor
            self._evictor = None

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

        idle = list(self._idle)
        self._idle.clear()
        await asyncio.gather(*(self.factory.destroy_object(c) for c in idle))

    def _has_capacity(self) -> bool:
        if self.config.max_total < 0:
            return True
        total = len(self._idle) + len(self._active) + self._in_transit
        return total < self.config.max_total

    def _idle_has_room(self) -> bool:
        return self.config.max_idle < 0 or len(self._idle) < self.config.max_idle

    def _requeue(self, connection: PooledConnection) -> None:
        """Put an idle connection back where its return time places it."""
        for index, other in enumerate(self._idle):
            if self.config.lifo:
                before = other.returned_at < connection.returned_at
            else:
                before = other.returned_at > connection.returned_at
            if before:
                self._idle.insert(index, connection)
                return
        self._idle.append(connection)

    def _checkout(self, connection: PooledConnection) -> PooledConnection:
        self._active.add(connection)
        connection._owner = self
        return connection

    async def _activate(self, connection: PooledConnection) -> bool:
        self._in_transit += 1
        try:
            valid = self.factory.is_current(connection)
            if valid and self.config.test_on_borrow:
                valid = await self.factory.validate_object(connection)
        except BaseException:
            self._in_transit -= 1
            if not self._closed:
                self._idle.appendleft(connection)
            raise
        self._in_transit -= 1

        if valid and not self._closed:
            self._checkout(connection)
            return True

        self.logger.debug(f"Discarding stale idle {connection!r}")
        self._wake_waiter()
        await self.factory.destroy_object(connection)
        return False

    async def _create(self) -> Optional[PooledConnection]:
        self._in_transit += 1
        try:
            connection = await self.factory.make_object()
        except BaseException:
            self._in_transit -= 1
            self._wake_waiter()
            raise
        self._in_transit -= 1

        if self._closed:
            await self.factory.destroy_object(connection)
            raise PoolClosedError("Pool closed while creating a connection")
        if not self.factory.is_current(connection):
            # the master moved while this connection was being opened
            self._wake_waiter()
            await self.factory.destroy_object(connection)
            return None
        return self._checkout(connection)

    async def _passivate(self, connection: PooledConnection) -> bool:
        try:
            await connection.reset_state()
        except (RedisError, OSError) as e:
            self.logger.warning(f"Could not reset state of {connection!r}: {e}")
            return False
        if not self.factory.is_current(connection):
            return False
        if self.config.test_on_return:
            return await self.factory.validate_object(connection)
        return True

    async def _wait(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float]) -> None:
        timeout = None
        if deadline is not None:
            timeout = deadline - loop.time()
            if timeout <= 0:
                raise PoolExhaustedError("Timed out waiting for an idle connection")

        waiter = loop.create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            raise PoolExhaustedError("Timed out waiting for an idle connection") from None
        except BaseException:
            # hand an already delivered wake-up to the next borrower
            if waiter.done() and not waiter.cancelled():
                self._wake_waiter()
            raise
        finally:
            with suppress(ValueError):
                self._waiters.remove(waiter)

    def _wake_waiter(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    async def _run_evictor(self, interval: float) -> None:
        while not self._closed:
            await asyncio.sleep(interval)
            await self.evict()


class SentinelListener:
    """
    Follows ``+switch-master`` events published by one Sentinel node.

    The subscription is retried forever with a bounded exponential backoff.
    On every (re)subscription the master address is re-queried so that
    switches missed while disconnected are still reported.
    """

    def __init__(
        self,
        master_name: str,
        sentinel: HostAndPort,
        on_master_switch: Callable[[HostAndPort], Awaitable[None]],
        config: Optional[SentinelPoolConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.master_name = master_name
        self.sentinel = sentinel
        self.config = config or SentinelPoolConfig(master_name=master_name)
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._on_master_switch = on_master_switch
        self._backoff = ExponentialBackoff(
            cap=self.config.subscribe_retry_max_delay,
            base=self.config.subscribe_retry_delay,
        )
        self._failures = 0
        self._subscribed = False
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(master={self.master_name}, "
            f"sentinel={self.sentinel})>"
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    @property
    def failures(self) -> int:
        """Consecutive failed subscription attempts."""
        return self._failures

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"sentinel-listener-{self.sentinel}"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            try:
                await self._listen()
            except (RedisError, OSError) as e:
                delay = self._backoff.compute(self._failures)
                self._failures += 1
                self.logger.error(
                    f"Lost subscription to sentinel {self.sentinel} "
                    f"({type(e).__name__}: {e}), retrying in {delay:.2f}s"
                )
            except Exception as e:
                delay = self._backoff.compute(self._failures)
                self._failures += 1
                self.logger.error(
                    f"Unexpected error following sentinel {self.sentinel} "
                    f"({type(e).__name__}: {e}), retrying in {delay:.2f}s"
                )
            else:
                delay = self._backoff.compute(self._failures)
                self._failures += 1
                self.logger.warning(
                    f"Subscription to sentinel {self.sentinel} ended, "
                    f"retrying in {delay:.2f}s"
                )
            finally:
                self._subscribed = False
            await asyncio.sleep(delay)

    async def _listen(self) -> None:
        # pub/sub reads block until an event arrives, so no socket timeout here
        client = self.config.sentinel_client(self.sentinel)
        pubsub = client.pubsub()
        try:
            address = await client.sentinel_get_master_addr_by_name(self.master_name)
            if address:
                await self._on_master_switch(HostAndPort.parse(address))

            await pubsub.subscribe(SWITCH_MASTER_CHANNEL)
            self._subscribed = True
            self._failures = 0
            self.logger.info(f"Subscribed to {SWITCH_MASTER_CHANNEL} on sentinel {self.sentinel}")

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                await self._handle_message(message["data"])
        finally:
            await pubsub.aclose()
            await client.aclose()

    async def _handle_message(self, data: str) -> None:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        parts = data.split(" ")
        if len(parts) != 5:
            self.logger.error(
                f"Invalid message received on sentinel {self.sentinel} "
                f"on channel {SWITCH_MASTER_CHANNEL}: {data}"
            )
            return
        name, _, _, new_host, new_port = parts
        if name != self.master_name:
            self.logger.debug(
                f"Ignoring message on {SWITCH_MASTER_CHANNEL} for master {name}. "
                f"Our master is {self.master_name}."
            )
            return
        try:
            address = HostAndPort(new_host, int(new_port))
        except ValueError:
            self.logger.error(f"Invalid master address in {SWITCH_MASTER_CHANNEL} message: {data}")
            return
        await self._on_master_switch(address)


class SentinelPool:
    """
    A bounded pool of connections to the master of a Sentinel-monitored group.

    Features:
    - Master discovery across the configured Sentinel nodes
    - One failover listener per reachable Sentinel
    - Idle connections dropped when the master moves
    - Credential rotation through the connection factory

    Recommended usage (async context manager)::

        config = SentinelPoolConfig(
            master_name="mymaster",
            sentinels=["sentinel1:26379", "sentinel2:26379"],
            password="foobared",
            db=2,
        )
        async with SentinelPool(config) as pool:
            async with pool.resource() as conn:
                await conn.set("key", "value")

    Without a context manager, call ``initialize()`` at startup (or let the
    first ``get_resource()`` do it) and ``close()`` at shutdown.
    """

    def __init__(
        self,
        config: SentinelPoolConfig,
        factory: Optional[ConnectionFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the pool. No network I/O happens until ``initialize()``.

        Args:
            config: Pool configuration.
            factory: Custom connection factory. Its own credentials are used
                instead of the ones in ``config``; only its address is managed
                by the pool.
            logger: Custom logger instance. Creates one if not provided.

        Raises:
            ValueError: If no Sentinel endpoint or master name is configured.
        """
        if not config.sentinels:
            raise ValueError("At least one Sentinel endpoint is required")
        if not config.master_name:
            raise ValueError("A master name is required")

        self.config = config
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.factory = factory or ConnectionFactory(
            connect_timeout=config.connect_timeout,
            socket_timeout=config.socket_timeout,
            username=config.username,
            password=config.password,
            db=config.db,
            client_name=config.client_name,
            decode_responses=config.decode_responses,
        )

        self._pool = ResourcePool(self.factory, config.pool, logger=self.logger)
        self._listeners: List[SentinelListener] = []
        self._master: Optional[HostAndPort] = None
        self._lock = asyncio.Lock()
        self._initialized = False
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(master_name={self.config.master_name}, "
            f"master={self._master})>"
        )

    @property
    def current_master(self) -> Optional[HostAndPort]:
        return self._master

    @property
    def listeners(self) -> List[SentinelListener]:
        return list(self._listeners)

    @property
    def num_active(self) -> int:
        return self._pool.num_active

    @property
    def num_idle(self) -> int:
        return self._pool.num_idle

    @property
    def num_waiters(self) -> int:
        return self._pool.num_waiters

    def is_closed(self) -> bool:
        return self._closed

    async def initialize(self) -> None:
        """
        Discover the master and start the failover listeners.

        Safe to call concurrently; discovery runs exactly once.

        Raises:
            SentinelsUnreachableError: If no Sentinel could be reached
            MasterNotMonitoredError: If the reachable Sentinels do not
                know ``master_name``
            PoolClosedError: If the pool was closed
        """
        if self._initialized:
            return

        async with self._lock:
            if self._closed:
                raise PoolClosedError("Pool is closed")
            if self._initialized:
                return

            master, reachable = await self._discover_master()
            self._set_master(master)
            self._pool.start()

            for sentinel in reachable:
                listener = SentinelListener(
                    self.config.master_name,
                    sentinel,
                    self._on_master_switch,
                    config=self.config,
                    logger=self.logger,
                )
                listener.start()
                self._listeners.append(listener)

            self._initialized = True

    async def get_resource(self) -> PooledConnection:
        """
        Borrow a connection to the current master.

        Close the returned connection (or use it as ``async with``) to
        give it back to the pool.

        Raises:
            PoolExhaustedError: If no connection became available
            PoolClosedError: If the pool is closed
            CredentialsRejectedError: If a new connection cannot authenticate
            ConnectionError: If the master cannot be reached
        """
        if self._closed:
            raise PoolClosedError("Pool is closed")
        if not self._initialized:
            await self.initialize()
        return await self._pool.borrow()

    @asynccontextmanager
    async def resource(self) -> AsyncIterator[PooledConnection]:
        """Borrow a connection for the duration of an ``async with`` block."""
        connection = await self.get_resource()
        try:
            yield connection
        finally:
            await connection.close()

    def set_password(self, password: Optional[str]) -> None:
        self.factory.set_password(password)

    def set_username(self, username: Optional[str]) -> None:
        self.factory.set_username(username)

    def set_database(self, db: int) -> None:
        self.factory.set_database(db)

    def set_client_name(self, client_name: Optional[str]) -> None:
        self.factory.set_client_name(client_name)

    async def health_check(self) -> bool:
        """
        Borrow a connection and PING the master.

        Returns:
            True if the master answered, False otherwise
        """
        try:
            async with self.resource() as conn:
                return bool(await conn.ping())
        except (ConnectionError, TimeoutError) as e:
            self.logger.error(f"Master health check failed: {type(e).__name__}: {e}")
            return False
        except RedisError as e:
            self.logger.error(f"Redis error during health check: {e}")
            return False

    async def close(self) -> None:
        """
        Stop the listeners and close the pool.

        Connections checked out at this point are closed when returned.
        Safe to call more than once.
        """
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            listeners, self._listeners = self._listeners, []

        await asyncio.gather(*(listener.stop() for listener in listeners))
        await self._pool.close()
        self.logger.info(f"Sentinel pool for master {self.config.master_name!r} closed")

    async def destroy(self) -> None:
        await self.close()

    async def __aenter__(self) -> "SentinelPool":
        """Async context manager entry: discovers the master."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit with cleanup."""
        await self.close()

    def _set_master(self, master: HostAndPort) -> None:
        self._master = master
        self.factory.address = master

    async def _discover_master(self) -> Tuple[HostAndPort, List[HostAndPort]]:
        """
        Ask the Sentinels, in order, for the master address.

        Returns:
            The master address and the Sentinels not found unreachable
        """
        name = self.config.master_name
        master: Optional[HostAndPort] = None
        reachable: List[HostAndPort] = []
        collected_errors = []

        for sentinel in self.config.sentinels:
            if master is not None:
                reachable.append(sentinel)
                continue

            client = self.config.sentinel_client(
                sentinel, socket_timeout=self.config.sentinel_socket_timeout
            )
            try:
                address = await client.sentinel_get_master_addr_by_name(name)
            except (ConnectionError, TimeoutError) as e:
                collected_errors.append(f"{sentinel} - {e!r}")
                self.logger.warning(
                    f"Cannot get master address from sentinel {sentinel}: "
                    f"{type(e).__name__}: {e}"
                )
                continue
            except ResponseError as e:
                reachable.append(sentinel)
                self.logger.warning(f"Sentinel {sentinel} rejected the master query: {e}")
                continue
            finally:
                await client.aclose()

            reachable.append(sentinel)
            if address:
                master = HostAndPort.parse(address)
                self.logger.info(f"Found master {name!r} at {master} via sentinel {sentinel}")
            else:
                self.logger.warning(f"Sentinel {sentinel} does not monitor master {name!r}")

        if master is not None:
            return master, reachable

        if reachable:
            raise MasterNotMonitoredError(
                f"Can connect to sentinel, but {name!r} seems to be not monitored"
            )
        error_info = ""
        if collected_errors:
            error_info = f" : {', '.join(collected_errors)}"
        raise SentinelsUnreachableError(
            f"All sentinels down, cannot determine where {name!r} master is running{error_info}"
        )

    async def _on_master_switch(self, address: HostAndPort) -> None:
        async with self._lock:
            if self._closed:
                return
            if address == self._master:
                self.logger.debug(f"Master {self.config.master_name!r} already at {address}")
                return
            previous = self._master
            self._set_master(address)
            self.logger.info(
                f"Master {self.config.master_name!r} switched from {previous} to {address}"
            )
            await self._pool.clear()
