"""
In-page helper script

페이지 안에 주입되는 셀렉터 해석기와 DOM 조작 헬퍼입니다.
``findElement`` tries, in order: ``xpath:``/``text:`` prefixes, exact CSS,
``#id`` lookup, XPath text match, attribute match, then button/link text.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from tabpilot.src.agent.errors import ActionTimeoutError, HostError
from tabpilot.src.host.base import PageTab

HELPER_NAMESPACE = "__tabpilotHelpers"

HELPER_CHECK_SCRIPT = f"typeof window.{HELPER_NAMESPACE} !== 'undefined'"

HELPER_SCRIPT = """
(() => {
  if (window.__tabpilotHelpers) {
    return true;
  }

  const sleep = (ms) => new Promise((resolve) => setTimeout(resolve, ms));

  const byXPath = (expr) => {
    try {
      const result = document.evaluate(expr, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null);
      return result.singleNodeValue;
    } catch (e) {
      return null;
    }
  };

  const byText = (text) => {
    const needle = text.toLowerCase();
    const candidates = Array.from(document.querySelectorAll('button, [role="button"], a, [role="link"], label, span, div'));
    const exact = candidates.find((el) => (el.textContent || '').trim().toLowerCase() === needle);
    if (exact) return exact;
    return candidates.find((el) => (el.textContent || '').toLowerCase().includes(needle)) || null;
  };

  window.__tabpilotHelpers = {
    findElement(selector) {
      if (!selector) return null;

      if (selector.startsWith('xpath:')) {
        return byXPath(selector.substring(6));
      }
      if (selector.startsWith('text:')) {
        return byText(selector.substring(5));
      }

      try {
        const el = document.querySelector(selector);
        if (el) return el;
      } catch (e) {
        // not a valid CSS selector, fall through
      }

      if (selector.startsWith('#')) {
        const el = document.getElementById(selector.substring(1));
        if (el) return el;
      }

      const literal = selector.replace(/'/g, "''");
      const textMatch = byXPath(`//*[contains(text(), '${literal}')]`);
      if (textMatch) return textMatch;

      try {
        const el = document.querySelector(`[${selector}]`);
        if (el) return el;
      } catch (e) {
        // not a valid attribute name
      }

      const needle = selector.toLowerCase();
      const clickables = Array.from(document.querySelectorAll('button, [role="button"], a, [role="link"]'));
      return clickables.find((el) => (el.textContent || '').toLowerCase().includes(needle)) || null;
    },

    exists(selector) {
      return { success: true, found: !!this.findElement(selector) };
    },

    async click(selector, settleMs, offsetX, offsetY) {
      const el = this.findElement(selector);
      if (!el) return { success: false, error: 'Element not found: ' + selector };
      el.scrollIntoView({ block: 'center', inline: 'center' });
      await sleep(settleMs || 0);
      if (typeof offsetX === 'number' && typeof offsetY === 'number') {
        const rect = el.getBoundingClientRect();
        const init = { bubbles: true, cancelable: true, view: window, clientX: rect.left + offsetX, clientY: rect.top + offsetY };
        el.dispatchEvent(new MouseEvent('mousedown', init));
        el.dispatchEvent(new MouseEvent('mouseup', init));
        el.dispatchEvent(new MouseEvent('click', init));
      } else {
        el.click();
      }
      return { success: true, element: el.tagName, text: (el.textContent || '').trim().substring(0, 100) };
    },

    async type(selector, text, clear, minDelay, maxDelay) {
      const el = this.findElement(selector);
      if (!el) return { success: false, error: 'Element not found: ' + selector };
      el.scrollIntoView({ block: 'center' });
      el.focus();
      if (clear) el.value = '';
      for (const ch of text) {
        el.value = (el.value || '') + ch;
        el.dispatchEvent(new Event('input', { bubbles: true }));
        const span = Math.max(0, maxDelay - minDelay);
        await sleep(minDelay + Math.random() * span);
      }
      el.dispatchEvent(new Event('input', { bubbles: true }));
      el.dispatchEvent(new Event('change', { bubbles: true }));
      el.dispatchEvent(new Event('blur', { bubbles: true }));
      return { success: true, value: el.value };
    },

    select(selector, value) {
      const el = this.findElement(selector);
      if (!el) return { success: false, error: 'Element not found: ' + selector };
      el.value = value;
      el.dispatchEvent(new Event('input', { bubbles: true }));
      el.dispatchEvent(new Event('change', { bubbles: true }));
      return { success: true, value: el.value };
    },

    scroll(direction, amount, toSelector) {
      if (toSelector) {
        const el = this.findElement(toSelector);
        if (!el) return { success: false, error: 'Element not found: ' + toSelector };
        el.scrollIntoView({ block: 'center' });
        return { success: true, scrollY: window.scrollY };
      }
      if (direction === 'down') window.scrollBy({ top: amount });
      else if (direction === 'up') window.scrollBy({ top: -amount });
      else if (direction === 'to') window.scrollTo({ top: amount });
      else return { success: false, error: 'Invalid scroll direction: ' + direction };
      return { success: true, scrollY: window.scrollY };
    },

    hover(selector) {
      const el = this.findElement(selector);
      if (!el) return { success: false, error: 'Element not found: ' + selector };
      el.scrollIntoView({ block: 'center' });
      el.dispatchEvent(new MouseEvent('mouseover', { bubbles: true }));
      el.dispatchEvent(new MouseEvent('mouseenter', { bubbles: true }));
      return { success: true };
    },

    getText(selector) {
      const el = this.findElement(selector);
      if (!el) return { success: false, error: 'Element not found: ' + selector };
      return { success: true, text: (el.textContent || '').trim() };
    },

    getAttribute(selector, attribute) {
      const el = this.findElement(selector);
      if (!el) return { success: false, error: 'Element not found: ' + selector };
      return { success: true, value: el.getAttribute(attribute) };
    },

    extractData(schema) {
      const read = (el, type) => {
        if (!el) return null;
        const text = (el.textContent || '').trim();
        if (type === 'url') return el.href || el.getAttribute('href');
        if (type === 'image') return el.src || el.getAttribute('src');
        if (type === 'number') {
          const parsed = parseFloat(text.replace(/[^0-9.\\-]/g, ''));
          return Number.isNaN(parsed) ? null : parsed;
        }
        return text;
      };
      const results = {};
      for (const [key, config] of Object.entries(schema)) {
        if (!config || !config.selector) continue;
        if (config.multiple || config.type === 'array') {
          let elements = [];
          try {
            elements = Array.from(document.querySelectorAll(config.selector));
          } catch (e) {
            results[key] = [];
            continue;
          }
          const itemType = config.type === 'array' ? 'text' : config.type;
          results[key] = elements.map((el) => read(el, itemType));
        } else {
          const el = this.findElement(config.selector);
          results[key] = el ? read(el, config.type) : null;
        }
      }
      return { success: true, data: results };
    },

    interactiveElements(limit) {
      const tags = ['a', 'button', 'input', 'select', 'textarea'];
      const roles = ['button', 'link', 'textbox', 'searchbox', 'checkbox', 'tab', 'menuitem'];
      const out = [];
      document.querySelectorAll('*').forEach((el, index) => {
        const tag = el.tagName.toLowerCase();
        const role = el.getAttribute('role');
        const clickable = el.hasAttribute('onclick');
        if (!tags.includes(tag) && !(role && roles.includes(role)) && !clickable) return;
        if (el.offsetParent === null && tag !== 'body') return;
        let selector = tag;
        const classes = typeof el.className === 'string' ? el.className.split(' ').filter((c) => c).join('.') : '';
        if (el.id) selector = '#' + el.id;
        else if (el.getAttribute('name')) selector = `${tag}[name="${el.getAttribute('name')}"]`;
        else if (classes) selector = tag + '.' + classes;
        else selector = `${tag}:nth-of-type(${index + 1})`;
        out.push({
          tag,
          selector,
          text: (el.textContent || '').trim().substring(0, 100) || undefined,
          type: el.getAttribute('type') || undefined,
          placeholder: el.getAttribute('placeholder') || undefined,
          ariaLabel: el.getAttribute('aria-label') || undefined,
          href: el.getAttribute('href') || undefined,
        });
      });
      return out.slice(0, limit || 100);
    },
  };

  return true;
})()
""".strip()

PAGE_LOAD_SCRIPT = """
new Promise((resolve) => {
  if (document.readyState === 'complete') {
    resolve(true);
  } else {
    window.addEventListener('load', () => resolve(true), { once: true });
  }
})
""".strip()


def helper_call(method: str, *args: Any) -> str:
    """Build ``window.__tabpilotHelpers.<method>(...)`` with JSON-encoded arguments."""
    encoded = ", ".join(json.dumps(arg) for arg in args)
    return f"window.{HELPER_NAMESPACE}.{method}({encoded})"


async def run_script(tab: PageTab, code: str, timeout_ms: int) -> Any:
    """Run a script bounded by ``timeout_ms``; host failures surface as HostError."""
    try:
        if timeout_ms and timeout_ms > 0:
            return await asyncio.wait_for(tab.run_script(code), timeout_ms / 1000)
        return await tab.run_script(code)
    except asyncio.TimeoutError as exc:
        raise ActionTimeoutError(f"Script execution timed out after {timeout_ms}ms") from exc
    except HostError:
        raise
    except Exception as exc:
        raise HostError(str(exc) or exc.__class__.__name__) from exc


async def ensure_helper_script(tab: PageTab, timeout_ms: int = 30000) -> bool:
    """헬퍼 스크립트가 없으면 주입합니다. Returns True when the helpers are present."""
    if await run_script(tab, HELPER_CHECK_SCRIPT, timeout_ms) is True:
        return True
    return await run_script(tab, HELPER_SCRIPT, timeout_ms) is True


async def wait_for_page_load(tab: PageTab, timeout_ms: int = 10000, settle_ms: int = 1000) -> None:
    """Wait for ``document.readyState === 'complete'``, then let the page settle."""
    try:
        await asyncio.wait_for(tab.run_script(PAGE_LOAD_SCRIPT), timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        raise ActionTimeoutError(f"Page load timed out after {timeout_ms}ms") from exc
    if settle_ms > 0:
        await asyncio.sleep(settle_ms / 1000)


async def extract_interactive_elements(tab: PageTab, limit: int = 100, timeout_ms: int = 30000) -> Optional[str]:
    """Interactive-element listing used as the simplified DOM in planning context."""
    await ensure_helper_script(tab, timeout_ms)
    elements = await run_script(tab, helper_call("interactiveElements", limit), timeout_ms)
    if elements is None:
        return None
    return json.dumps(elements, ensure_ascii=False, indent=2)
