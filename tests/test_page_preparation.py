import asyncio

import pytest

from extraction.page_preparation import DISMISS_OVERLAYS_INSTRUCTION, prepare_results_view

from conftest import FakeBrowser


def test_prepare_results_view_runs_steps_in_order():
    page = FakeBrowser()
    logs = []
    steps = ["Open the beds filter", "Pick 1+"]

    asyncio.run(
        prepare_results_view(page, "https://www.apartments.com/jersey-city-nj/", steps, 25, logs.append)
    )

    assert page.calls[0] == ("goto", "https://www.apartments.com/jersey-city-nj/")
    assert page.calls[1] == ("act", DISMISS_OVERLAYS_INSTRUCTION)
    assert page.calls[2] == ("act", "Open the beds filter")
    assert page.calls[3] == ("act", "Pick 1+")
    assert page.calls[4][0] == "act"
    assert "25 unique property cards" in page.calls[4][1]
    assert logs == [
        "Navigating to https://www.apartments.com/jersey-city-nj/",
        "Ensuring map and results are visible",
        "Open the beds filter",
        "Pick 1+",
        "Scrolling through results to load more listings",
    ]


def test_prepare_results_view_propagates_failures():
    page = FakeBrowser(fail_on="act", error=RuntimeError("overlay stuck"))

    with pytest.raises(RuntimeError, match="overlay stuck"):
        asyncio.run(prepare_results_view(page, "https://www.apartments.com/x/", [], 25, lambda _: None))
