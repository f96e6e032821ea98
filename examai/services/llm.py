import logging

from examai.config import settings

logger = logging.getLogger(__name__)


def build_llm(
    model: str | None = None,
    base_url: str | None = None,
    timeout_seconds: float | None = None,
):
    """Text-generation client used by the extractor: anything with ``complete(prompt) -> .text``."""
    try:
        from llama_index.llms.ollama import Ollama
    except ImportError as exc:
        raise RuntimeError("llama-index-llms-ollama is not installed") from exc

    model_name = model or settings.ollama_model
    url = base_url or settings.ollama_url
    logger.info("Configuring Ollama client at %s with model %s", url, model_name)
    return Ollama(
        model=model_name,
        base_url=url,
        temperature=settings.llm_temperature,
        request_timeout=timeout_seconds if timeout_seconds is not None else settings.llm_request_timeout_seconds,
        additional_kwargs={"num_predict": settings.llm_max_output_tokens},
    )
