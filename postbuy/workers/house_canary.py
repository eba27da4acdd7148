"""
HouseCanary valuation report.

Logs in, walks the Data Explorer wizard with a one-row input workbook, clicks
"Generate Analysis" and waits for the report download. The download is
detected by, in priority order: the ``HouseCanary-`` file name prefix, the
browser's download event, or any new ``.xlsx`` that is not our own input
sheet. The report is uploaded to storage and the local copy removed.
"""

from __future__ import annotations

from pathlib import Path

from openpyxl import Workbook

from postbuy.address import parse_address, sanitize_filename
from postbuy.completion import DirectorySnapshot, DomSelectorSource, NewFileSource, PrefixFileSource
from postbuy.config import HOUSECANARY_KEYS
from postbuy.session import click, navigate, type_text, upload, wait_for_signal
from postbuy.store import XLSX_CONTENT_TYPE
from postbuy.workers.base import Worker, status_fields

HOUSECANARY_URL = "https://housecanary.com"
BUCKET = "housecanaryreports"

REPORT_PREFIX = "HouseCanary-"
INPUT_SHEET_PREFIX = "sample_dexp_input_"
INPUT_SHEET_HEADER = ("client_file_id", "address", "zipcode")

DOWNLOAD_TIMEOUT_MS = 300_000
DOWNLOAD_POLL_MS = 5_000
DOWNLOAD_GRACE_MS = 3_000

LOGIN_LINKS = (
    'a:has-text("Log in")',
    'button:has-text("Log in")',
    'a:has-text("Login")',
    'button:has-text("Login")',
    'a:has-text("Sign in")',
    'button:has-text("Sign in")',
)
EMAIL_INPUTS = (
    'input[type="email"]',
    'input[name="email"]',
    'input[id*="email"]',
    'input[placeholder*="email" i]',
)
PASSWORD_INPUTS = ('input[type="password"]',)
SUBMIT_BUTTONS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Log in")',
    'button:has-text("Sign in")',
    'button:has-text("Continue")',
)
DATA_EXPLORER_LAUNCH = (
    ':has-text("Data Explorer") >> button:has-text("Launch")',
    ':has-text("Data Explorer") >> a:has-text("Launch")',
    'button:has-text("Launch")',
    'a:has-text("Launch")',
    'button:has-text("Open")',
    'a:has-text("Open")',
    'button:has-text("Start")',
)
VALUE_CHECKBOX = (
    'label:has-text("value") input[type="checkbox"]:not(:checked)',
    'xpath=//*[normalize-space(text())="value"]/ancestor::*[position()<=5]//input[@type="checkbox"]',
)
NEXT_BUTTONS = ('button:has-text("Next")',)
CONTINUE_TO_UPLOAD = (
    'button:has-text("Continue to Upload")',
    'button:has-text("Continue"):has-text("Upload")',
)
FILE_INPUTS = ('input[type="file"]',)
GENERATE_ANALYSIS = ('button:has-text("Generate Analysis")',)


def write_input_sheet(address: str, directory: Path | str) -> Path:
    """Write the one-row Data Explorer input workbook for ``address``."""
    street, zipcode = parse_address(address)
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{INPUT_SHEET_PREFIX}{sanitize_filename(address)}.xlsx"

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "sample_input"
    sheet.append(INPUT_SHEET_HEADER)
    sheet.append((1, street, zipcode))
    workbook.save(path)
    return path


class HouseCanaryWorker(Worker):
    name = "house_canary"
    label = "HouseCanary"

    def login_steps(self, page):
        return [
            navigate(HOUSECANARY_URL, timeout_ms=120_000, settle_ms=5_000),
            click(LOGIN_LINKS, optional=True, settle_ms=8_000, name="open login"),
            type_text(EMAIL_INPUTS, self.settings.housecanary_email, type_delay_ms=100, name="email"),
            type_text(PASSWORD_INPUTS, self.settings.housecanary_password, type_delay_ms=100, name="password"),
            click(SUBMIT_BUTTONS, name="submit login"),
            wait_for_signal(
                [DomSelectorSource(page, "text=Data Explorer", name="dashboard")],
                timeout_ms=60_000,
                settle_ms=2_000,
                name="dashboard",
            ),
        ]

    def wizard_steps(self, input_sheet: Path):
        return [
            click(DATA_EXPLORER_LAUNCH, settle_ms=8_000, name="launch data explorer"),
            click(VALUE_CHECKBOX, settle_ms=3_000, name="value checkbox"),
            click(NEXT_BUTTONS, settle_ms=8_000, name="next"),
            click(CONTINUE_TO_UPLOAD, settle_ms=8_000, name="continue to upload"),
            upload(FILE_INPUTS, input_sheet, settle_ms=5_000),
        ]

    async def download_report(self, address: str) -> Path:
        async with self.session() as session:
            input_sheet = await self.in_executor(write_input_sheet, address, session.download_dir)
            await session.driver.run(self.login_steps(session.page))
            await session.driver.run(self.wizard_steps(input_sheet))

            snapshot = DirectorySnapshot.take(session.download_dir, suffix=".xlsx")
            outcomes = await session.driver.run([
                click(GENERATE_ANALYSIS, name="generate analysis"),
                wait_for_signal(
                    [
                        PrefixFileSource(snapshot, REPORT_PREFIX, name="housecanary_prefix"),
                        session.downloads,
                        NewFileSource(snapshot, exclude_prefixes=(INPUT_SHEET_PREFIX,), name="new_xlsx"),
                    ],
                    timeout_ms=DOWNLOAD_TIMEOUT_MS,
                    poll_interval_ms=DOWNLOAD_POLL_MS,
                    settle_ms=DOWNLOAD_GRACE_MS,
                    name="report download",
                ),
            ])
            signal = outcomes[-1].signal
        return Path(signal.matched_identifier)

    async def collect(self, address: str):
        self.settings.require(HOUSECANARY_KEYS)
        report = await self.download_report(address)
        self.log.info(f"Report downloaded: {report.name}")

        url = await self.upload_artifact(BUCKET, report, "report", ".xlsx", XLSX_CONTENT_TYPE)
        report.unlink(missing_ok=True)

        fields = status_fields("house_canary_data", [url])
        return await self.finish(address, fields, payload={"report_url": url}, artifact_ref=url)
