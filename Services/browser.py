import logging
import os

from dotenv import load_dotenv
from playwright.async_api import async_playwright

from Services.capture import capture

load_dotenv()

VIEWPORT_WIDTH = int(os.getenv("VIEWPORT_WIDTH", "1440"))
VIEWPORT_HEIGHT = int(os.getenv("VIEWPORT_HEIGHT", "900"))
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", "30000"))
IMAGE_WAIT_MS = int(os.getenv("IMAGE_WAIT_MS", "3000"))

logger = logging.getLogger(__name__)


class CaptureError(Exception):
    pass


# Raw dump of the rendered tree; all filtering happens in Services.capture.
SNAPSHOT_JS = """
(root) => {
    const PROPS = [
        'display', 'visibility', 'opacity', 'position', 'left', 'top',
        'flexDirection', 'justifyContent', 'alignItems', 'gap',
        'paddingTop', 'paddingRight', 'paddingBottom', 'paddingLeft',
        'backgroundColor', 'backgroundImage',
        'borderTopLeftRadius', 'borderTopRightRadius',
        'borderBottomRightRadius', 'borderBottomLeftRadius',
        'color', 'fontSize', 'fontWeight', 'fontFamily', 'lineHeight', 'textAlign',
    ];

    function walk(node) {
        if (node.nodeType === Node.TEXT_NODE) {
            return { nodeType: 3, text: node.textContent };
        }
        if (node.nodeType !== Node.ELEMENT_NODE) {
            return null;
        }
        const cs = window.getComputedStyle(node);
        const rect = node.getBoundingClientRect();
        const computed = {};
        for (const p of PROPS) computed[p] = cs[p];

        const out = {
            nodeType: 1,
            tagName: node.tagName,
            computed,
            rect: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
            children: [],
        };
        if (node.tagName === 'IMG') {
            out.src = node.currentSrc || node.src || '';
            return out;
        }
        if (cs.display === 'none') {
            return out;
        }
        // A shadow root is what renders, not the light DOM; a slot renders
        // the light DOM nodes assigned to it.
        let kids = node.shadowRoot ? node.shadowRoot.childNodes : node.childNodes;
        if (node.tagName === 'SLOT') {
            kids = node.assignedNodes ? node.assignedNodes({ flatten: true }) : [];
        }
        for (const child of kids) {
            const c = walk(child);
            if (c) out.children.push(c);
        }
        return out;
    }

    return walk(root || document.body);
}
"""

SCROLL_JS = """
async () => {
    const delay = (ms) => new Promise(r => setTimeout(r, ms));
    const scrollHeight = document.body.scrollHeight;
    const step = window.innerHeight;
    for (let y = 0; y < scrollHeight; y += step) {
        window.scrollTo(0, y);
        await delay(100);
    }
    window.scrollTo(0, 0);
    await delay(200);
}
"""

WAIT_IMAGES_JS = """
async (timeoutMs) => {
    const deadline = Date.now() + timeoutMs;
    const pending = () => Array.from(document.images).filter(img => !img.complete);
    while (pending().length && Date.now() < deadline) {
        await new Promise(r => setTimeout(r, 100));
    }
}
"""


async def snapshot_page(url: str, width: int = VIEWPORT_WIDTH, height: int = VIEWPORT_HEIGHT) -> dict:
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        try:
            page = await browser.new_page(viewport={"width": width, "height": height})
            await page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
            await page.evaluate(SCROLL_JS)
            await page.evaluate(WAIT_IMAGES_JS, IMAGE_WAIT_MS)
            return await page.evaluate(SNAPSHOT_JS)
        finally:
            await browser.close()


async def capture_page(url: str, width: int = VIEWPORT_WIDTH, height: int = VIEWPORT_HEIGHT):
    logger.info("[CAPTURE] %s at %sx%s", url, width, height)
    raw = await snapshot_page(url, width, height)
    node = capture(raw)
    if node is None:
        raise CaptureError("Page rendered no visible content")
    return node
