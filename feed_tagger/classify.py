"""Tag classification using Amazon Bedrock."""

import asyncio
import json
import re
import time

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockConfig
from .errors import ClassifierBatchError, RateLimitedError
from .logging_config import create_execution_logger

RATE_LIMIT_CODES = {
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceQuotaExceededException",
}

PROMPT_TEMPLATE = """Generate 3-5 relevant topical tags for each article below.
Each tag must be one or two words.

Return ONLY a JSON array with exactly one object per article, in the same order
as the articles, shaped like:
[{{"title": "<article title>", "tags": ["tag one", "tag two", "tag three"]}}]

Do not add any text before or after the JSON array.

ARTICLES:
{articles}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def build_prompt(texts: list[str]) -> str:
    """Number the article texts into the tagging prompt."""
    articles = "\n\n".join(f"{i}. {text}" for i, text in enumerate(texts, start=1))
    return PROMPT_TEMPLATE.format(articles=articles)


def parse_classifier_output(raw_output: str, expected: int) -> list[list[object]]:
    """Validate the model output against the JSON array contract.

    Args:
        raw_output: Text returned by the model
        expected: Number of articles in the batch

    Returns:
        One raw tag list per article; articles with a missing or malformed
        entry get an empty list

    Raises:
        ClassifierBatchError: If the output is not a JSON array of objects
    """
    text = raw_output.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ClassifierBatchError(f"Classifier output is not JSON: {e}") from e

    if not isinstance(payload, list) or not all(isinstance(entry, dict) for entry in payload):
        raise ClassifierBatchError("Classifier output is not a JSON array of objects")

    results: list[list[object]] = []
    for index in range(expected):
        tags = payload[index].get("tags") if index < len(payload) else None
        results.append(list(tags) if isinstance(tags, list) else [])
    return results


class BedrockClassifier:
    """Batch text classifier backed by a Bedrock model."""

    def __init__(
        self,
        config: BedrockConfig,
        execution_id: str | None = None,
        client=None,
    ):
        """Initialize the classifier with Bedrock configuration."""
        self.config = config
        self.logger = create_execution_logger("classifier", execution_id)
        self.bedrock_client = client
        if self.bedrock_client is None:
            self._initialize_bedrock_client()

    def _initialize_bedrock_client(self) -> None:
        """Initialize Bedrock client with error handling."""
        try:
            self.bedrock_client = boto3.client(
                "bedrock-runtime", region_name=self.config.region
            )
            self.logger.info("Initialized Bedrock client", region=self.config.region)
        except (BotoCoreError, ClientError) as e:
            self.logger.warning(
                f"Failed to initialize Bedrock client: {e}", error=str(e)
            )
            self.bedrock_client = None

    @property
    def is_llama(self) -> bool:
        return "llama" in self.config.model_id.lower()

    async def classify(self, texts: list[str]) -> list[list[object]]:
        """Classify a batch of texts into raw tag lists, one per text.

        Raises:
            RateLimitedError: If Bedrock throttles the call
            ClassifierBatchError: On any other failure or malformed output
        """
        if not texts:
            return []
        return await asyncio.to_thread(self._classify_sync, texts)

    def _format_llama_prompt(self, prompt: str) -> str:
        """Format prompt with Llama 3 chat template tags."""
        return f"""<|begin_of_text|><|start_header_id|>system<|end_header_id|>

You label news articles with short topical tags and answer with JSON only.<|eot_id|><|start_header_id|>user<|end_header_id|>

{prompt}<|eot_id|><|start_header_id|>assistant<|end_header_id|>

"""

    def _request_body(self, prompt: str) -> dict:
        # Llama: legacy prompt/max_gen_len format
        # Nova / Mistral: messages/inferenceConfig format
        if self.is_llama:
            return {
                "prompt": self._format_llama_prompt(prompt),
                "max_gen_len": self.config.max_tokens,
                "temperature": 0.2,
                "top_p": 0.9,
            }
        return {
            "messages": [{"role": "user", "content": [{"text": prompt}]}],
            "inferenceConfig": {"maxTokens": self.config.max_tokens, "temperature": 0.2},
        }

    def _extract_text(self, response_body: dict) -> str | None:
        if self.is_llama:
            return response_body.get("generation")

        message = response_body.get("output", {}).get("message", {})
        content = message.get("content") or []
        if content:
            return content[0].get("text")
        return None

    def _classify_sync(self, texts: list[str]) -> list[list[object]]:
        if not self.bedrock_client:
            raise ClassifierBatchError("Bedrock client not available")

        prompt = build_prompt(texts)
        start_time = time.time()
        try:
            self.logger.info(
                "Calling Bedrock API",
                model_id=self.config.model_id,
                batch_size=len(texts),
            )
            response = self.bedrock_client.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps(self._request_body(prompt)),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            error_message = e.response.get("Error", {}).get("Message", "")
            if error_code in RATE_LIMIT_CODES:
                self.logger.warning(
                    f"Bedrock rate limited the batch: {error_code}", error_code=error_code
                )
                raise RateLimitedError(f"{error_code}: {error_message}") from e
            self.logger.error(
                f"Bedrock client error: {error_code} - {error_message}",
                error_code=error_code,
            )
            raise ClassifierBatchError(f"{error_code}: {error_message}") from e
        except (BotoCoreError, json.JSONDecodeError, KeyError) as e:
            self.logger.error(f"Unexpected error calling Bedrock: {e}", error=str(e))
            raise ClassifierBatchError(str(e)) from e

        response_time_ms = int((time.time() - start_time) * 1000)
        output = self._extract_text(response_body)
        if not output or not output.strip():
            self.logger.warning(
                "Empty response from model",
                model_id=self.config.model_id,
                available_keys=list(response_body.keys()),
            )
            raise ClassifierBatchError("Empty response from classifier")

        self.logger.info(
            "Bedrock response received",
            response_length=len(output),
            response_time_ms=response_time_ms,
        )
        return parse_classifier_output(output, len(texts))
