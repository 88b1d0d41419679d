"""Memories page scenarios against a running void-server."""
import time

import pytest
from playwright.async_api import expect

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def test_memories_page_loads(world):
    await world.page.goto("/memories")

    await expect(world.page.locator("main").first).to_be_visible()


@pytest.mark.requires_neo4j
async def test_create_and_delete_memory(world):
    world.test_data["memory_content"] = f"E2E Test Memory {int(time.time() * 1000)}"
    content = world.test_data["memory_content"]
    page = world.page

    await page.goto("/memories")
    await page.click('button:has-text("New")')
    await page.fill('textarea[name="content"], [data-testid="memory-content"]', content)
    await page.click('button:has-text("Save")')
    await page.wait_for_selector(".fixed.inset-0", state="hidden")

    item = page.locator(f'.memory-item:has-text("{content}")').first
    await expect(item).to_be_visible()

    await item.locator('button[title="Delete"]').click()
    await expect(page.locator('[data-testid="delete-confirm-modal"]')).to_be_visible()
    await page.click('[data-testid="confirm-delete"]')
    await expect(page.locator(f'.memory-item:has-text("{content}")')).not_to_be_visible()


@pytest.mark.requires_neo4j
async def test_memory_status_reports_connection(world):
    status = await world.get("/api/memories/status")

    assert status["neo4j"]["connected"] is True
