"""
핸들러 레지스트리

잡 유형(job_type) → 핸들러 매핑을 관리합니다.
해석 순서: 잡 이름 override → job_type 등록 핸들러 → @handler 데코레이터 등록 클래스.
어디에도 없으면 HandlerNotFoundError (기본 에코 핸들러로 대체하지 않음).
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from worker.exception import HandlerNotFoundError
from worker.model.handler import HandlerContext, HandlerParams, HandlerResult

__all__ = [
    'handler',
    'get_handler',
    'get_registered_handlers',
    'BaseHandler',
    'FunctionHandler',
    'HandlerRegistry',
    'HandlerNotFoundError',
    'HandlerParams',
    'HandlerResult',
    'HandlerContext',
]

logger = logging.getLogger(__name__)

HandlerFunc = Callable[[dict[str, Any], HandlerContext], Awaitable[Any]]

# 핸들러 레지스트리 (모듈 레벨, @handler 데코레이터로 등록)
_registry: dict[str, type["BaseHandler"]] = {}


def handler(job_type: str):
    """핸들러 등록 데코레이터"""
    def decorator(cls):
        _registry[job_type] = cls
        return cls
    return decorator


def get_handler(job_type: str) -> "BaseHandler":
    """데코레이터로 등록된 핸들러 인스턴스 반환"""
    if job_type not in _registry:
        raise HandlerNotFoundError(job_type)
    return _registry[job_type]()


def get_registered_handlers() -> dict[str, type["BaseHandler"]]:
    """등록된 핸들러 목록 반환 (테스트용)"""
    return _registry.copy()


class BaseHandler(ABC):
    """
    배치 핸들러 기본 클래스

    params_model을 지정하면 잡 parameters를 해당 모델로 검증해 전달하고,
    None이면 dict 그대로 전달합니다.

    재시도 시 같은 잡에 대해 여러 번 호출될 수 있으므로 멱등하게 작성해야 합니다.
    """

    params_model: type[HandlerParams] | None = None

    @abstractmethod
    async def execute(self, params: Any, context: HandlerContext) -> HandlerResult | Any:
        """
        잡 실행 로직

        Args:
            params: params_model 인스턴스 또는 dict
            context: 실행 컨텍스트 (취소 신호 포함)

        Returns:
            HandlerResult 또는 임의 값 (Job.result.data에 저장)

        Raises:
            HandlerError: 구조화된 실패 (code, details, retryable)
            Exception: 그 외 실패 (재시도 대상)
        """
        pass


class FunctionHandler(BaseHandler):
    """async 함수 fn(params, context)를 핸들러로 감싸는 어댑터"""

    def __init__(self, func: HandlerFunc, params_model: type[HandlerParams] | None = None):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Handler function must be async: {getattr(func, '__name__', func)}")
        self._func = func
        self.params_model = params_model

    @property
    def name(self) -> str:
        return getattr(self._func, '__name__', repr(self._func))

    async def execute(self, params: Any, context: HandlerContext) -> Any:
        return await self._func(params, context)


def _as_handler(target: "BaseHandler | type[BaseHandler] | HandlerFunc") -> BaseHandler:
    if isinstance(target, BaseHandler):
        return target
    if inspect.isclass(target) and issubclass(target, BaseHandler):
        return target()
    if callable(target):
        return FunctionHandler(target)
    raise TypeError(f"Not a handler: {target!r}")


class HandlerRegistry:
    """
    인스턴스 단위 핸들러 레지스트리

    - register(job_type, handler): 유형별 기본 핸들러
    - override(owner, job_name, handler): 특정 잡 전용 핸들러
    """

    def __init__(self, use_decorated: bool = True):
        self._by_type: dict[str, BaseHandler] = {}
        self._overrides: dict[str, BaseHandler] = {}
        self._use_decorated = use_decorated

    def register(self, job_type: str, target: "BaseHandler | type[BaseHandler] | HandlerFunc") -> BaseHandler:
        instance = _as_handler(target)
        if job_type in self._by_type:
            logger.warning(f"Handler replaced: job_type={job_type}")
        self._by_type[job_type] = instance
        logger.debug(f"Handler registered: job_type={job_type}, handler={type(instance).__name__}")
        return instance

    def override(self, job_name: str, target: "BaseHandler | type[BaseHandler] | HandlerFunc", owner: str = "default") -> BaseHandler:
        instance = _as_handler(target)
        self._overrides[f"{owner}/{job_name}"] = instance
        logger.debug(f"Handler override registered: job={owner}/{job_name}")
        return instance

    def remove_override(self, job_name: str, owner: str = "default") -> None:
        self._overrides.pop(f"{owner}/{job_name}", None)

    def resolve(self, job_type: str, job_name: str | None = None, owner: str = "default") -> BaseHandler:
        """
        핸들러 해석

        Raises:
            HandlerNotFoundError: 등록된 핸들러 없음
        """
        if job_name is not None:
            override = self._overrides.get(f"{owner}/{job_name}")
            if override is not None:
                return override

        registered = self._by_type.get(job_type)
        if registered is not None:
            return registered

        if self._use_decorated:
            return get_handler(job_type)
        raise HandlerNotFoundError(job_type)

    def has(self, job_type: str) -> bool:
        return job_type in self._by_type or (self._use_decorated and job_type in _registry)
