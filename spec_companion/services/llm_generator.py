"""LLM-backed test generation.

A ``GenerationProvider`` turns a prompt into raw model text. The default
provider talks to any OpenAI-compatible chat completions endpoint through the
``openai`` client. ``LLMTestGenerator`` adds what every provider needs:
prompt construction, retries with exponential backoff for transient failures,
code fence extraction and validation of the returned code.
"""

import ast
import logging
import re
import threading
import time
from abc import ABC, abstractmethod

import openai
from openai import OpenAI

from spec_companion.errors import ProviderError
from spec_companion.models import AppSettings, Framework, Requirement
from spec_companion.services.codebase_scanner import CodeSymbol

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
FALLBACK_MODELS = ("claude-sonnet-4-20250514", "claude-3-5-sonnet-20241022")
MAX_TOKENS = 2048
MAX_CONTEXT_SYMBOLS = 30
MAX_BACKOFF_SECONDS = 30.0
CANCELLED_ERROR = "Generation cancelled"

CODE_BLOCK_RE = re.compile(r"```[ \t]*([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)

FRAMEWORK_INFO = {
    Framework.JEST: (
        "Jest (JavaScript/TypeScript testing framework)",
        """
Example Jest test structure:
```typescript
// REQ-001: User authentication
describe('User Authentication', () => {
  it('should authenticate user with valid credentials', () => {
    // Arrange
    const authService = new AuthService();

    // Act
    const result = authService.login('test@example.com', 'validPass123');

    // Assert
    expect(result.success).toBe(true);
    expect(result.user.email).toBe('test@example.com');
  });

  it('should reject invalid credentials', () => {
    const result = new AuthService().login('test@example.com', 'wrongPass');
    expect(result.success).toBe(false);
  });
});
```""",
    ),
    Framework.PYTEST: (
        "pytest (Python testing framework)",
        '''
Example pytest test structure:
```python
# REQ-001: User authentication

class TestUserAuthentication:
    def test_authenticate_with_valid_credentials(self):
        """Should authenticate user with valid email and password."""
        # Arrange
        auth_service = AuthService()

        # Act
        result = auth_service.login("test@example.com", "validPass123")

        # Assert
        assert result.success is True
        assert result.user.email == "test@example.com"

    def test_reject_invalid_credentials(self):
        """Should reject authentication with wrong password."""
        result = AuthService().login("test@example.com", "wrongPass")
        assert result.success is False
```''',
    ),
}

PROMPT_TEMPLATE = """Generate a test for the following requirement. Output ONLY the test code in a markdown code block, no explanations before or after.

**Requirement Details:**
- Description: {description}
- Section: {section}
- Type: {req_type}
- Priority: {priority}

**Test Framework:** {framework_info}

**Codebase Context:**
{context}
{example}

**Requirements for generated test:**
1. Clear arrange/act/assert structure (AAA pattern)
2. Meaningful assertions that actually test the requirement (not placeholders)
3. Traceability comment at top linking to requirement ID or description
4. Cover the main happy path and at least one edge case or error scenario
5. Use realistic mock data and object names matching the domain
6. Descriptive test names that explain what is being tested
7. Keep tests focused and readable (each test verifies one behavior)

Output the complete, ready-to-run test code:"""


class GenerationProvider(ABC):
    """Abstract interface for test generation backends."""

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return raw model output for ``prompt``.

        Raises:
            ProviderError: with ``transient=True`` for failures worth retrying
                (timeouts, rate limits, 5xx, connection errors).
        """
        ...


class OpenAICompatibleProvider(GenerationProvider):
    """Chat completions over the OpenAI wire format.

    Tries the configured model first, then the fallback models in order,
    before giving up on an attempt.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 90.0,
        fallback_models: tuple[str, ...] = FALLBACK_MODELS,
    ):
        if not api_key:
            raise ProviderError("An API key is required for LLM generation")
        self.model = model
        self.models = [model] + [m for m in fallback_models if m != model]
        # Retries are handled by LLMTestGenerator so backoff stays in one place
        self.client = OpenAI(api_key=api_key, base_url=base_url or None, timeout=timeout, max_retries=0)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "OpenAICompatibleProvider":
        return cls(
            api_key=settings.api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
        )

    def generate(self, prompt: str) -> str:
        last_error: ProviderError | None = None
        for index, model in enumerate(self.models):
            try:
                start = time.time()
                response = self.client.chat.completions.create(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=MAX_TOKENS,
                )
                logger.debug("LLM call to %s took %.2fs", model, time.time() - start)
                if index > 0:
                    logger.info("Primary model %s failed, used fallback %s", self.model, model)
                return response.choices[0].message.content or ""
            except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as e:
                # Covers APITimeoutError, which subclasses APIConnectionError
                logger.warning("Model %s failed with transient error: %s", model, e)
                last_error = ProviderError(f"{type(e).__name__}: {e}", transient=True)
            except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
                raise ProviderError(f"Provider rejected credentials: {e}") from e
            except openai.APIStatusError as e:
                logger.warning("Model %s failed (%s): %s", model, e.status_code, e)
                last_error = ProviderError(f"Provider error ({e.status_code}): {e}", transient=e.status_code >= 500)

        raise last_error or ProviderError("All models failed")


def build_context(symbols: list[CodeSymbol]) -> str:
    if not symbols:
        return "No codebase context available."
    lines = ["Codebase symbols:"]
    for symbol in symbols[:MAX_CONTEXT_SYMBOLS]:
        lines.append(f"- {symbol.kind} {symbol.name} (in {symbol.file_path})")
    return "\n".join(lines)


def build_prompt(requirement: Requirement, framework: Framework, symbols: list[CodeSymbol] | None = None) -> str:
    framework_info, example = FRAMEWORK_INFO[framework]
    return PROMPT_TEMPLATE.format(
        description=requirement.description,
        section=requirement.section,
        req_type=requirement.req_type,
        priority=requirement.priority,
        framework_info=framework_info,
        context=build_context(symbols or []),
        example=example,
    )


def extract_code_block(text: str) -> str:
    """Return the first fenced code block, or the text itself when there is none."""
    match = CODE_BLOCK_RE.search(text)
    if match:
        return match.group(2).strip()
    return text.strip()


def validate_code(code: str, framework: Framework) -> str | None:
    """Return a reason the code is unusable, or None if it looks runnable."""
    if not code.strip():
        return "Generated code is empty"

    if framework == Framework.PYTEST:
        try:
            tree = ast.parse(code)
        except SyntaxError as e:
            return f"Generated pytest code does not parse: {e.msg} (line {e.lineno})"
        has_test = any(
            isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name.startswith("test")
            for node in ast.walk(tree)
        )
        if not has_test:
            return "Generated pytest code defines no test function"
        return None

    if not re.search(r"\b(describe|it|test)\s*\(", code):
        return "Generated jest code has no describe/it/test block"
    if not _brackets_balanced(code):
        return "Generated jest code has unbalanced brackets"
    return None


def _brackets_balanced(code: str) -> bool:
    """Bracket check that ignores string literals and comments."""
    pairs = {")": "(", "]": "[", "}": "{"}
    stack: list[str] = []
    i = 0
    quote = None
    while i < len(code):
        ch = code[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif code.startswith("//", i):
            newline = code.find("\n", i)
            i = len(code) if newline < 0 else newline
            continue
        elif code.startswith("/*", i):
            end = code.find("*/", i + 2)
            i = len(code) if end < 0 else end + 2
            continue
        elif ch in "([{":
            stack.append(ch)
        elif ch in pairs:
            if not stack or stack.pop() != pairs[ch]:
                return False
        i += 1
    return not stack and quote is None


class LLMTestGenerator:
    """Generates one test per requirement with retry and validation."""

    def __init__(
        self,
        provider: GenerationProvider,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = MAX_BACKOFF_SECONDS,
        sleep=time.sleep,
    ):
        self.provider = provider
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: AppSettings, provider: GenerationProvider | None = None) -> "LLMTestGenerator":
        return cls(
            provider or OpenAICompatibleProvider.from_settings(settings),
            max_attempts=settings.llm_max_attempts,
            backoff_seconds=settings.llm_backoff_seconds,
        )

    def generate(
        self,
        requirement: Requirement,
        framework: Framework,
        symbols: list[CodeSymbol] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Generate validated test code for a single requirement.

        Raises:
            ProviderError: when attempts are exhausted, the provider fails
                permanently, the returned code is not usable, or ``cancel``
                is set before an attempt (detail ``CANCELLED_ERROR``).
        """
        prompt = build_prompt(requirement, framework, symbols)
        last_error: ProviderError | None = None

        for attempt in range(self.max_attempts):
            if cancel is not None and cancel.is_set():
                raise ProviderError(CANCELLED_ERROR)
            try:
                raw = self.provider.generate(prompt)
            except ProviderError as e:
                if not e.transient:
                    raise
                last_error = e
                logger.warning(
                    "Generation attempt %d/%d for requirement %s failed: %s",
                    attempt + 1, self.max_attempts, requirement.id, e.detail,
                )
                if attempt + 1 < self.max_attempts:
                    delay = min(self.backoff_seconds * 2**attempt, self.max_backoff_seconds)
                    if cancel is not None:
                        # Wakes early on cancel; the check at the top of the loop raises
                        cancel.wait(delay)
                    else:
                        self._sleep(delay)
                continue

            code = extract_code_block(raw)
            problem = validate_code(code, framework)
            if problem:
                raise ProviderError(problem)
            return code + "\n"

        logger.error(
            "All %d attempts exhausted for requirement %s. Last error: %s",
            self.max_attempts, requirement.id, last_error,
        )
        raise ProviderError(f"Generation failed after {self.max_attempts} attempts: {last_error.detail}")
