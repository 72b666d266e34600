"""
End-to-end tests for SitePipeline with a scripted LLM.
"""

import json

import pytest

from site_extractor import SitePipeline
from site_extractor.exceptions import ErrorType
from site_extractor.schemas import ClassificationLabel, ExtractorConfig

from conftest import StubLLMClient, json_reply


PRODUCT_URL = "https://www.amazon.com/dp/B00FLYWNYQ"

PRODUCT_HTML = """
<html>
<head>
  <title>Instant Pot Duo 7-in-1 Electric Pressure Cooker</title>
  <meta name="description" content="7-in-1 multi-use programmable pressure cooker.">
</head>
<body>
  <main>
    <h1>Instant Pot Duo 7-in-1 Electric Pressure Cooker</h1>
    <p>{body}</p>
    <span class="price">$89.99</span>
  </main>
</body>
</html>
""".replace("{body}", " ".join(["Cooks fast and saves energy."] * 70))

GOOD_REPLY = json_reply(
    title="Instant Pot Duo 7-in-1 Electric Pressure Cooker",
    main_content_summary="A programmable multi-use pressure cooker that also slow cooks, steams and sautes.",
    price="$89.99",
    reviews_rating="4.7/5",
    description="Contact sales@example.com for bulk orders of the 7-in-1 cooker.",
    confidence_score=92,
)


def pipeline_with(responses, **kwargs):
    return SitePipeline(
        config=ExtractorConfig(api_key="test-key", jitter_max_seconds=0.0, max_backoff_seconds=0.0),
        llm_client=StubLLMClient(responses),
        **kwargs
    )


@pytest.mark.asyncio
async def test_product_page():
    async with pipeline_with([GOOD_REPLY]) as pipeline:
        result = await pipeline.process_html(PRODUCT_HTML, url=PRODUCT_URL)

    assert result.site_type == "amazon"
    assert result.classification.label == ClassificationLabel.SINGLE_ITEM
    assert result.extraction.success is True
    assert result.extraction.data["description"].startswith("Contact [EMAIL_REDACTED]")
    assert result.validation.success is True
    assert result.validation.penalties == []
    assert result.success is True


@pytest.mark.asyncio
async def test_weak_extraction_is_penalised():
    reply = json_reply(title="Pot", price="cheap", main_content_summary=None, confidence_score=70)
    async with pipeline_with([reply]) as pipeline:
        result = await pipeline.process_html(PRODUCT_HTML, url=PRODUCT_URL)

    assert result.extraction.success is True
    assert result.success is False
    assert set(result.validation.weak_fields) == {"title", "price", "main_content_summary"}
    assert result.validation.validated_data["price"] is None


@pytest.mark.asyncio
async def test_failed_extraction_skips_validation():
    async with pipeline_with(["no json here"]) as pipeline:
        result = await pipeline.process_html(PRODUCT_HTML, url=PRODUCT_URL)

    assert result.extraction.error_type == ErrorType.PARSE_ERROR
    assert result.validation is None
    assert result.success is False


@pytest.mark.asyncio
async def test_site_type_override_and_file(tmp_path):
    path = tmp_path / "page.html"
    path.write_text(PRODUCT_HTML, encoding="utf-8")

    async with pipeline_with([GOOD_REPLY]) as pipeline:
        result = await pipeline.process_file(path, site_type="wikipedia")

    assert result.site_type == "wikipedia"
    assert result.extraction.metadata.site_type == "wikipedia"


@pytest.mark.asyncio
async def test_rules_file(tmp_path):
    rules = tmp_path / "rules.json"
    rules.write_text(json.dumps({"penalty_thresholds": {"price": {"required": True}}}))
    reply = json_reply(
        title="Instant Pot Duo 7-in-1 Electric Pressure Cooker",
        main_content_summary="A programmable multi-use pressure cooker that also slow cooks, steams and sautes.",
        price=None,
    )

    async with pipeline_with([reply], rules_path=rules) as pipeline:
        result = await pipeline.process_html(PRODUCT_HTML, url=PRODUCT_URL)

    assert result.validation.metrics.required_fields_total == 3
    assert result.validation.weak_fields == ["price"]
    assert result.success is False


@pytest.mark.asyncio
async def test_report():
    async with pipeline_with([GOOD_REPLY, "no json here"]) as pipeline:
        results = [
            await pipeline.process_html(PRODUCT_HTML, url=PRODUCT_URL),
            await pipeline.process_html(PRODUCT_HTML, url="https://example.com/other"),
        ]

    report = pipeline.report(results)
    assert report["validation_summary"]["total_sites"] == 1
    assert report["site_performance"][0]["site"] == PRODUCT_URL
    assert report["penalty_analysis"]["interpretation"] == "NO_PENALTY"
    assert report["trajectory_analysis"]["trajectory"] == "TARGET_ACHIEVED"


@pytest.mark.asyncio
async def test_report_uses_business_weights_from_rules_file(tmp_path):
    rules = tmp_path / "rules.json"
    rules.write_text(json.dumps({"business_weights": {"amazon": 0.0, "generic": 1.0}}))

    async with pipeline_with([GOOD_REPLY, GOOD_REPLY], rules_path=rules) as pipeline:
        results = [
            await pipeline.process_html(PRODUCT_HTML, url=PRODUCT_URL),
            await pipeline.process_html(PRODUCT_HTML, url="https://example.com/other"),
        ]

    report = pipeline.report(results, previous_accuracy=50)
    assert report["business_metrics"]["total_weight"] == pytest.approx(1.0)
    assert report["executive_summary"]["previous_accuracy"] == 50
