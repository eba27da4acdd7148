"""School district boundary map screenshot from GreatSchools."""

from __future__ import annotations

from postbuy.completion import DomSelectorSource, UrlSource
from postbuy.session import navigate, press, type_text, wait_for_signal
from postbuy.store import PNG_CONTENT_TYPE
from postbuy.workers.base import Worker, status_fields

GREATSCHOOLS_URL = "https://www.greatschools.org/school-district-boundaries-map/"
BUCKET = "school-district-maps"

SEARCH_INPUTS = (
    'input[type="text"]',
    'input[placeholder*="search" i]',
    'input[placeholder*="address" i]',
    'input[placeholder*="location" i]',
    'input[aria-label*="search" i]',
    'input[class*="search"]',
    'input[class*="Search"]',
    ".search-input",
    "#search-input",
    'input[name="search"]',
    'input[name="q"]',
)

# A resolved search puts the location in the query string and lists the districts.
RESULT_URL = r"[?&](lat|latitude)="
DISTRICT_RESULTS = '[class*="district" i] a[href], [data-testid*="district" i]'
ZOOM_LEVEL = 0.75
# Resolves once the browser has painted two frames at the new zoom.
ZOOM_SCRIPT = """
(zoom) => new Promise((resolve) => {
    document.body.style.zoom = String(zoom);
    requestAnimationFrame(() => requestAnimationFrame(resolve));
})
"""


class SchoolDistrictWorker(Worker):
    name = "school_district"
    label = "School district"

    async def capture(self, address: str):
        async with self.session() as session:
            await session.driver.run([
                navigate(GREATSCHOOLS_URL, timeout_ms=120_000, settle_ms=5_000),
                type_text(SEARCH_INPUTS, address, type_delay_ms=100, name="search address"),
                press("Enter"),
                wait_for_signal(
                    [
                        UrlSource(session.page, RESULT_URL, name="result_url"),
                        DomSelectorSource(session.page, DISTRICT_RESULTS, name="district_results"),
                    ],
                    timeout_ms=60_000,
                    settle_ms=3_000,
                    name="district results",
                ),
            ])
            # Zoomed out so the whole district fits in one screenshot.
            await session.page.evaluate(ZOOM_SCRIPT, ZOOM_LEVEL)
            return await session.screenshot("school_district_result.png", full_page=True)

    async def collect(self, address: str):
        screenshot = await self.capture(address)
        url = await self.upload_artifact(BUCKET, screenshot, "school_district", ".png", PNG_CONTENT_TYPE)
        fields = status_fields("school_district_confirmation", [url])
        return await self.finish(address, fields, payload={"screenshot_url": url}, artifact_ref=url)
