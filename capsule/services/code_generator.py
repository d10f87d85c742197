# FILE: capsule/services/code_generator.py
"""
Short code allocation for memory records
"""
import logging
import secrets
from typing import Awaitable, Callable, List, Optional

from capsule.services.errors import ExhaustionError
from capsule.services.telemetry import record_event

logger = logging.getLogger(__name__)

# Each digit appears twice, so any truncation repeats a symbol at most twice
CODE_ALPHABET: List[str] = [d for d in "0123456789" for _ in range(2)]

_random = secrets.SystemRandom()


def generate_code(length: int = 8) -> str:
    """Build one candidate code from a shuffled copy of the alphabet"""
    if not 1 <= length <= len(CODE_ALPHABET):
        raise ValueError(f"code length must be between 1 and {len(CODE_ALPHABET)}")
    symbols = list(CODE_ALPHABET)
    _random.shuffle(symbols)
    return "".join(symbols[:length])


class CodeGenerator:
    """Allocates codes that are not yet taken in the metadata store"""

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        length: int = 8,
        max_attempts: int = 20,
        candidate_factory: Optional[Callable[[int], str]] = None
    ):
        self.exists = exists
        self.length = length
        self.max_attempts = max_attempts
        self.candidate_factory = candidate_factory or generate_code

    async def allocate(self) -> str:
        """Return a free code or raise ExhaustionError after max_attempts collisions"""
        for attempt in range(1, self.max_attempts + 1):
            code = self.candidate_factory(self.length)
            if not await self.exists(code):
                if attempt > 1:
                    logger.info(f"Allocated code after {attempt} attempts")
                return code
            logger.debug(f"Code collision on attempt {attempt}")

        logger.error(f"Could not allocate a unique code after {self.max_attempts} attempts")
        record_event("code_allocation_exhausted", attempts=self.max_attempts)
        raise ExhaustionError(
            f"Could not generate a unique code after {self.max_attempts} attempts"
        )
