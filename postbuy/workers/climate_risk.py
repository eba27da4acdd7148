"""Climate risk factors (flood, fire, wind, air, heat) from riskfactor.com via OCR."""

from __future__ import annotations

from typing import Optional

from postbuy.address import sanitize_filename
from postbuy.completion import DomSelectorSource, UrlSource
from postbuy.extraction import TextExtractionEngine
from postbuy.models import WorkerResult
from postbuy.recognition import TesseractRecognizer, TextRecognizer
from postbuy.session import navigate, press, type_text, wait_for_signal
from postbuy.workers.base import Worker, status_fields

RISKFACTOR_URL = "https://riskfactor.com/"

SEARCH_INPUTS = (
    'input[placeholder*="address" i]',
    'input[placeholder*="search" i]',
    'input[type="text"]',
    'input[name="address"]',
    'input[id*="address"]',
    'input[class*="search"]',
    'input[class*="Search"]',
)

# Address search lands on a per-property page; scores render after it loads.
PROPERTY_PAGE = r"riskfactor\.com/property/"
RISK_SCORE = r"text=/\b\d{1,2}\s*\/\s*10\b/"


class ClimateRiskWorker(Worker):
    name = "climate_risk"
    label = "Climate risk"

    def __init__(
        self,
        *args,
        recognizer: Optional[TextRecognizer] = None,
        engine: Optional[TextExtractionEngine] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.recognizer = recognizer or TesseractRecognizer()
        self.engine = engine or TextExtractionEngine()

    async def capture(self, address: str):
        async with self.session() as session:
            driver = session.driver
            await driver.run([navigate(RISKFACTOR_URL, timeout_ms=90_000, settle_ms=3_000)])
            await driver.dismiss_consent()
            await driver.run([
                type_text(SEARCH_INPUTS, address, type_delay_ms=100, name="search address"),
                press("Enter"),
                wait_for_signal(
                    [UrlSource(session.page, PROPERTY_PAGE, name="property_page")],
                    timeout_ms=90_000,
                    name="property page",
                ),
                wait_for_signal(
                    [DomSelectorSource(session.page, RISK_SCORE, name="risk_score")],
                    timeout_ms=60_000,
                    settle_ms=3_000,
                    name="risk scores",
                ),
            ])
            return await session.screenshot(f"climate_{sanitize_filename(address)}.png", full_page=True)

    async def collect(self, address: str):
        screenshot = await self.capture(address)
        text = await self.in_executor(self.recognizer.recognize, screenshot)
        factors = self.engine.extract(text)
        self.log.info(f"Risk factors: {factors}")
        if all(value is None for value in factors.values()):
            return WorkerResult.failure(f"{self.label} failure: no risk factors recognized in {screenshot.name}")

        fields = {}
        for factor, value in factors.items():
            fields.update(status_fields(f"{factor}_factor_data", value))
        return await self.finish(address, fields, payload={"risk_factors": factors, "screenshot": str(screenshot)})
