"""Registered offender map around the address (FamilyWatchdog), uploaded as a screenshot."""

from __future__ import annotations

from postbuy.completion import DomSelectorSource
from postbuy.session import click, navigate, type_text, wait_for_signal
from postbuy.store import PNG_CONTENT_TYPE
from postbuy.workers.base import Worker, status_fields

FAMILYWATCHDOG_URL = "https://www.familywatchdog.us"
BUCKET = "sexual-predator-maps"

SELECT2_CONTAINER = "#select2-txtAutoComplete-container"
SELECT2_INPUT = ".select2-search__field"
SELECT2_OPTION = ".select2-results__option"
MAP_CANVAS = "#map_canvas"
MAP_READY_ICON = "svg.H_icon"


class OffenderMapWorker(Worker):
    name = "offender_map"
    label = "Offender map"

    async def capture(self, address: str):
        async with self.session() as session:
            driver = session.driver
            page = session.page
            await driver.run([navigate(FAMILYWATCHDOG_URL, timeout_ms=120_000, settle_ms=2_000)])
            await driver.dismiss_consent(phrases=("Accept",))
            await driver.run([
                click(SELECT2_CONTAINER, name="open search"),
                type_text([SELECT2_INPUT], address, name="search address"),
                wait_for_signal(
                    [DomSelectorSource(page, SELECT2_OPTION, name="suggestions")],
                    timeout_ms=45_000,
                    settle_ms=1_000,
                    name="suggestions",
                ),
                click(SELECT2_OPTION, name="first suggestion"),
                wait_for_signal(
                    [DomSelectorSource(page, MAP_CANVAS, name="map_canvas")],
                    timeout_ms=90_000,
                    name="map canvas",
                ),
                # Map tiles keep rendering after the icon layer appears.
                wait_for_signal(
                    [DomSelectorSource(page, MAP_READY_ICON, name="map_icons")],
                    timeout_ms=120_000,
                    settle_ms=8_000,
                    name="map icons",
                ),
            ])
            await page.locator(MAP_CANVAS).first.scroll_into_view_if_needed()
            return await session.screenshot("sp_detection_result.png", full_page=True)

    async def collect(self, address: str):
        screenshot = await self.capture(address)
        url = await self.upload_artifact(BUCKET, screenshot, "sp_map", ".png", PNG_CONTENT_TYPE)
        fields = status_fields("sexual_predators_data", [url])
        return await self.finish(address, fields, payload={"screenshot_url": url}, artifact_ref=url)
