"""
Decision graphs — thin runner over nodnod.

Branchy decisions are written as nodes. A node's __compose__ raises
NodeError when its case does not apply; a @polymorphic node picks the
first case whose dependencies resolved.

    from fiatrails import graph as G

    @G.node
    class Parsed:
        @classmethod
        def __compose__(cls, raw: Raw) -> "Parsed": ...

    parsed = await G.run(Parsed).inject(raw)

Note: modules that define nodes must not use 'from __future__ import
annotations'. nodnod resolves dependencies from runtime type hints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast
from collections.abc import Callable, Coroutine

from nodnod import Scope, Value, EventLoopAgent, Node
from nodnod import scalar_node as node


class TypedScope:
    """Type-safe wrapper around nodnod.Scope."""

    __slots__ = ("_scope",)

    def __init__(self, detail: str = "scope") -> None:
        self._scope = Scope(detail=detail)

    @property
    def inner(self) -> Scope:
        return self._scope

    def inject[T](self, typ: type[T], value: T) -> TypedScope:
        self._scope.push(Value(typ, value))
        return self

    def get[T](self, typ: type[T]) -> T:
        result = self._scope.get(typ)
        if result is None:
            raise KeyError(f"{typ.__name__} not found in scope")
        return cast(T, result.value)

    async def __aenter__(self) -> TypedScope:
        await self._scope.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._scope.__aexit__(*args)


@dataclass(frozen=True, slots=True)
class Run[T]:
    """
    Awaitable runner for one target node.

    Dependencies are discovered from the target; inputs are injected by
    their runtime type.
    """

    _target: type[T]
    _injections: tuple[tuple[type[Any], Any], ...]

    def inject(self, value: object) -> Run[T]:
        return Run(
            _target=self._target,
            _injections=(*self._injections, (cast(type[Any], type(value)), value)),
        )

    def __await__(self) -> Any:
        return self._execute().__await__()

    async def _execute(self) -> T:
        agent = EventLoopAgent.build({cast(type[Node[Any, Any]], self._target)})

        async with TypedScope(detail="run") as scope:
            for typ, value in self._injections:
                scope.inject(typ, value)

            run_method = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(agent, "run"),
            )
            await run_method(scope.inner, {})

            return scope.get(self._target)


def run[T](target: type[T]) -> Run[T]:
    return Run(_target=target, _injections=())


__all__ = ("node", "run", "Run", "TypedScope")
