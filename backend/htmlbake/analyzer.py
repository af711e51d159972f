"""
Document analyzer.

One pass over the rendered element tree:
  1. wait for fonts + two frames so geometry is not sampled mid-transition
  2. detect a full-screen mask layer (modal backdrop and friends)
  3. resolve the root element (explicit selector or auto-detect)
  4. extract every visible element below the root in a single evaluate()
  5. build the immutable AnalysisNode tree in Python (classification,
     device-pixel geometry, synthesized text / range pseudo-parts)

The browser side only measures; every decision lives in TreeBuilder.
"""

import hashlib
import json
import uuid
from dataclasses import replace

from htmlbake.config import Resolution, Settings
from htmlbake.css import corner_radii, is_icon_glyph, parse_float, parse_px, rotation_from_transform
from htmlbake.errors import AnalysisError, RootNotFoundError
from htmlbake.models import (
    ATOMIC_VISUAL_TAGS,
    CONTAINER,
    IMAGE,
    TEXT,
    AnalysisNode,
    AnalysisTree,
    ComputedStyle,
    MaskInfo,
    Rect,
    TextStyle,
    count_nodes,
)
from htmlbake.pseudo import PseudoStyleResolver, range_geometry, value_ratio

# ============================================================
# BROWSER SCRIPTS
# ============================================================

STABILITY_JS = """
async ({ fontTimeout, delay }) => {
    if (document.fonts && document.fonts.ready) {
        try {
            await Promise.race([
                document.fonts.ready,
                new Promise((resolve) => setTimeout(resolve, fontTimeout)),
            ]);
        } catch (_) {
            // a rejected font promise still counts as settled
        }
    }
    await new Promise((resolve) => requestAnimationFrame(resolve));
    await new Promise((resolve) => requestAnimationFrame(resolve));
    await new Promise((resolve) => setTimeout(resolve, delay));
    return true;
}
"""

DETECT_MASK_JS = """
() => {
    for (const stale of document.querySelectorAll('[data-bake-mask]')) {
        stale.removeAttribute('data-bake-mask');
    }
    const vw = window.innerWidth || document.documentElement.clientWidth;
    const vh = window.innerHeight || document.documentElement.clientHeight;

    const alphaOf = (color) => {
        if (!color || color === 'transparent') return 0;
        const match = color.match(/rgba?\\(([^)]+)\\)/i);
        if (!match) return 1;
        const parts = match[1].split(/[\\s,\\/]+/).filter(Boolean);
        if (parts.length < 4) return 1;
        const alpha = parseFloat(parts[3]);
        return Number.isFinite(alpha) ? alpha : 1;
    };
    const effectiveZ = (node) => {
        let current = node;
        while (current && current !== document.documentElement) {
            const z = window.getComputedStyle(current).zIndex;
            if (z && z !== 'auto') {
                const zi = parseInt(z, 10);
                if (Number.isFinite(zi)) return zi;
            }
            current = current.parentElement;
        }
        return 0;
    };
    const overlayClass = (el) => {
        const cls = typeof el.className === 'string' ? el.className : '';
        return /(?:^|\\s)(?:overlay|mask|modal|backdrop|inset-0|bg-opacity-\\d+|backdrop-blur-\\w+)(?:\\s|$)/i.test(cls);
    };
    const isZero = (v) => v === '0px' || v === '0';
    const insetZero = (s) => isZero(s.top) && isZero(s.right) && isZero(s.bottom) && isZero(s.left);

    const candidates = [];
    for (const el of Array.from(document.body ? document.body.querySelectorAll('*') : [])) {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden' || parseFloat(style.opacity) === 0) continue;
        if (style.position !== 'fixed' && style.position !== 'absolute') continue;
        const rect = el.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) continue;

        const parent = el.offsetParent || el.parentElement;
        const parentRect = parent ? parent.getBoundingClientRect() : { width: vw, height: vh };
        const coversViewport = rect.width >= vw * 0.9 && rect.height >= vh * 0.9;
        const coversParent = rect.width >= parentRect.width * 0.9 && rect.height >= parentRect.height * 0.9;

        const bgAlpha = alphaOf(style.backgroundColor);
        const hasBackground = bgAlpha > 0 || (style.backgroundImage && style.backgroundImage !== 'none');
        const backdrop = style.backdropFilter || style.webkitBackdropFilter || 'none';
        if (!hasBackground && backdrop === 'none') continue;

        const translucent = bgAlpha > 0 && bgAlpha < 1;
        if (!(coversViewport || coversParent || insetZero(style) || overlayClass(el) || translucent)) continue;

        candidates.push({
            el,
            zIndex: effectiveZ(el),
            area: rect.width * rect.height,
            rect: { x: rect.left, y: rect.top, width: rect.width, height: rect.height },
        });
    }
    if (candidates.length === 0) return { hasMask: false };

    candidates.sort((a, b) => (a.zIndex !== b.zIndex ? a.zIndex - b.zIndex : a.area - b.area));
    const mask = candidates[candidates.length - 1];
    mask.el.setAttribute('data-bake-mask', '1');
    // hit-testing against the mask needs it to receive pointer hits
    if (window.getComputedStyle(mask.el).pointerEvents === 'none') {
        mask.el.style.pointerEvents = 'auto';
    }
    return { hasMask: true, zIndex: mask.zIndex, rect: mask.rect };
}
"""

RESOLVE_ROOT_JS = """
({ selector }) => {
    for (const stale of document.querySelectorAll('[data-bake-root]')) {
        stale.removeAttribute('data-bake-root');
    }
    const body = document.body;
    if (!body) return { found: false, reason: 'document has no <body>' };
    const sx = window.scrollX;
    const sy = window.scrollY;
    const vw = window.innerWidth || document.documentElement.clientWidth || 1;
    const vh = window.innerHeight || document.documentElement.clientHeight || 1;

    const pageRect = (r) => ({ x: r.left + sx, y: r.top + sy, width: r.width, height: r.height });
    const accept = (el, how, rectOverride) => {
        el.setAttribute('data-bake-root', '1');
        return {
            found: true,
            how,
            isBody: el === body,
            tag: el.tagName,
            rect: rectOverride || pageRect(el.getBoundingClientRect()),
        };
    };

    if (selector && selector.toLowerCase() !== 'auto') {
        let el = null;
        try {
            el = document.querySelector(selector);
        } catch (e) {
            return { found: false, reason: `invalid root selector ${selector}: ${e.message}` };
        }
        if (!el) return { found: false, reason: `root selector not found: ${selector}` };
        return accept(el, 'selector');
    }

    const tokenRe = /(^|[\\s_-])(app|root|page|screen|container|wrapper|main|content)([\\s_-]|$)/i;
    const overlayRe = /(^|[\\s_-])(modal|dialog|popup|toast|tooltip|overlay|mask|backdrop|drawer)([\\s_-]|$)/i;
    const hints = ['#app', '#root', '#__next', '#__nuxt', 'main#app', 'main[role="main"]',
                   '[data-ui-root]', '[data-root]', '[data-app]'];
    const tokens = (el) => `${el.id || ''} ${typeof el.className === 'string' ? el.className : ''}`.trim();

    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity || '1') === 0) return false;
        const rect = el.getBoundingClientRect();
        return rect.width > 1 && rect.height > 1;
    };
    const isOverlay = (el) => {
        if (!isVisible(el)) return false;
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        const covers = rect.width >= vw * 0.92 && rect.height >= vh * 0.92;
        const positioned = style.position === 'fixed' || style.position === 'absolute';
        if (overlayRe.test(tokens(el)) && positioned) return true;
        if (style.position === 'fixed' && covers) return true;
        const topLeft = (style.top === '0px' || style.top === '0') && (style.left === '0px' || style.left === '0');
        return positioned && topLeft && covers;
    };
    const isCandidate = (el) => {
        if (!el || el === body || !isVisible(el) || isOverlay(el)) return false;
        const rect = el.getBoundingClientRect();
        return rect.width >= 24 && rect.height >= 24;
    };

    for (const hint of hints) {
        const el = document.querySelector(hint);
        if (el && body.contains(el) && isCandidate(el)) return accept(el, `hint:${hint}`);
    }

    const direct = Array.from(body.children).filter(isCandidate);
    if (direct.length === 1) return accept(direct[0], 'single-child');

    let bounds = null;
    for (const el of Array.from(body.querySelectorAll('*')).filter(isCandidate)) {
        const r = el.getBoundingClientRect();
        bounds = bounds
            ? {
                left: Math.min(bounds.left, r.left), top: Math.min(bounds.top, r.top),
                right: Math.max(bounds.right, r.right), bottom: Math.max(bounds.bottom, r.bottom),
            }
            : { left: r.left, top: r.top, right: r.right, bottom: r.bottom };
    }

    const visibleDirect = Array.from(body.children).filter(isVisible);
    if (direct.length === 0 && visibleDirect.length === 1) return accept(visibleDirect[0], 'single-visible-child');

    const pool = [];
    for (const child of direct) {
        pool.push({ el: child, depth: 0, directChild: true });
        for (const grandChild of Array.from(child.children).filter(isCandidate)) {
            pool.push({ el: grandChild, depth: 1, directChild: false });
        }
    }

    let best = null;
    for (const item of pool) {
        const rect = item.el.getBoundingClientRect();
        const style = window.getComputedStyle(item.el);
        const source = tokens(item.el);
        let score = 0;
        if (item.directChild) score += 20;
        score -= item.depth * 6;
        score += Math.min(rect.width / vw, 2) * 12;
        score += Math.min(rect.height / vh, 2) * 12;
        score -= Math.min(Math.abs(rect.left) + Math.abs(rect.top), 800) * 0.02;
        if (tokenRe.test(source)) score += 12;
        if (overlayRe.test(source)) score -= 24;
        if (item.el.tagName === 'MAIN') score += 8;
        if (item.el.tagName === 'DIV') score += 4;
        if (style.position === 'fixed') score -= 8;
        if (style.position === 'absolute') score -= 3;
        if (bounds) {
            const dx = Math.abs(rect.left - bounds.left) + Math.abs(rect.right - bounds.right);
            const dy = Math.abs(rect.top - bounds.top) + Math.abs(rect.bottom - bounds.bottom);
            score -= Math.min(dx + dy, 2400) * 0.015;
            const area = Math.max(1, rect.width * rect.height);
            const contentArea = Math.max(1, (bounds.right - bounds.left) * (bounds.bottom - bounds.top));
            score += (Math.min(area, contentArea) / Math.max(area, contentArea)) * 18;
        }
        if (!best || score > best.score) best = { el: item.el, score };
    }
    if (best && best.score >= 8) return accept(best.el, `scored:${best.score.toFixed(1)}`);

    if (!bounds) return { found: false, reason: 'no visible content' };
    return accept(body, 'content-bounds', {
        x: bounds.left + sx,
        y: bounds.top + sy,
        width: Math.max(1, bounds.right - bounds.left),
        height: Math.max(1, bounds.bottom - bounds.top),
    });
}
"""

EXTRACT_JS = """
() => {
    for (const stale of document.querySelectorAll('[data-bake-key], [data-bake-id]')) {
        stale.removeAttribute('data-bake-key');
        stale.removeAttribute('data-bake-id');
    }
    const root = document.querySelector('[data-bake-root="1"]');
    if (!root) return null;

    const maskEl = document.querySelector('[data-bake-mask="1"]');
    const maskRect = maskEl ? maskEl.getBoundingClientRect() : null;
    const vw = window.innerWidth || document.documentElement.clientWidth;
    const vh = window.innerHeight || document.documentElement.clientHeight;
    const sx = window.scrollX;
    const sy = window.scrollY;
    const ATOMIC = new Set(['IMG', 'SVG', 'CANVAS', 'VIDEO', 'PICTURE']);
    const ATTRS = ['id', 'name', 'type', 'role', 'placeholder', 'value', 'href', 'src', 'alt', 'title', 'for',
                   'aria-label', 'aria-labelledby', 'aria-describedby', 'data-action'];
    const BOOL_ATTRS = ['checked', 'disabled', 'readonly', 'required', 'selected'];
    let counter = 0;

    const pageRect = (r) => ({ x: r.left + sx, y: r.top + sy, width: r.width, height: r.height });
    const alphaOf = (color) => {
        if (!color || color === 'transparent') return 0;
        const match = color.match(/rgba?\\(([^)]+)\\)/i);
        if (!match) return 1;
        const parts = match[1].split(/[\\s,\\/]+/).filter(Boolean);
        if (parts.length < 4) return 1;
        const alpha = parseFloat(parts[3]);
        return Number.isFinite(alpha) ? alpha : 1;
    };

    const domPath = (node) => {
        const parts = [];
        let current = node;
        while (current && current.nodeType === 1 && current !== document.documentElement) {
            const tag = current.tagName.toLowerCase();
            let index = 1;
            let sibling = current;
            while (sibling.previousElementSibling) {
                sibling = sibling.previousElementSibling;
                if (sibling.tagName === current.tagName) index += 1;
            }
            const same = current.parentElement
                ? Array.from(current.parentElement.children).filter((c) => c.tagName === current.tagName).length
                : 0;
            parts.unshift(same > 1 ? `${tag}:nth-of-type(${index})` : tag);
            current = current.parentElement;
        }
        return parts.join(' > ');
    };

    const occluded = (el) => {
        if (!maskEl || el === maskEl || el.contains(maskEl) || el.closest('[data-bake-mask="1"]')) return false;
        const rect = el.getBoundingClientRect();
        const intersects = !(rect.right <= maskRect.left || rect.left >= maskRect.right ||
                             rect.bottom <= maskRect.top || rect.top >= maskRect.bottom);
        if (!intersects) return false;
        const points = [
            [rect.left + rect.width / 2, rect.top + rect.height / 2],
            [rect.left + 1, rect.top + 1],
            [rect.right - 1, rect.bottom - 1],
        ];
        for (const [x, y] of points) {
            if (x < 0 || y < 0 || x > vw || y > vh) continue;
            const top = document.elementFromPoint(x, y);
            if (top && top.closest('[data-bake-mask="1"]')) return true;
        }
        return false;
    };

    const attrsOf = (el) => {
        const list = [];
        const push = (key, value) => {
            if (value == null) return;
            const text = String(value).trim();
            if (!text || list.some((item) => item[0] === key)) return;
            list.push([key, text]);
        };
        for (const name of ATTRS) push(name, el.getAttribute(name));
        for (const name of BOOL_ATTRS) {
            if (el.hasAttribute(name)) push(name, 'true');
        }
        for (const attr of Array.from(el.attributes || [])) {
            if (/^data-ui-/i.test(attr.name)) push(attr.name, attr.value);
        }
        return list;
    };

    const borderOf = (style) => {
        let width = 0;
        let color = '';
        for (const side of ['Top', 'Right', 'Bottom', 'Left']) {
            const w = parseFloat(style[`border${side}Width`]) || 0;
            const s = style[`border${side}Style`];
            if (w > width && s !== 'none' && s !== 'hidden') {
                width = w;
                color = style[`border${side}Color`];
            }
        }
        return { width, color };
    };

    const directText = (el) => {
        const nodes = Array.from(el.childNodes).filter(
            (n) => n.nodeType === Node.TEXT_NODE && (n.textContent || '').trim().length > 0,
        );
        if (nodes.length === 0) return { text: '', rect: null };
        let minX = Infinity, minY = Infinity, maxX = -Infinity, maxY = -Infinity;
        for (const n of nodes) {
            const range = document.createRange();
            range.selectNodeContents(n);
            for (const r of Array.from(range.getClientRects())) {
                minX = Math.min(minX, r.left);
                minY = Math.min(minY, r.top);
                maxX = Math.max(maxX, r.right);
                maxY = Math.max(maxY, r.bottom);
            }
        }
        const text = nodes.map((n) => n.textContent).join('');
        if (!Number.isFinite(minX)) return { text, rect: null };
        return { text, rect: { x: minX + sx, y: minY + sy, width: maxX - minX, height: maxY - minY } };
    };

    const extract = (el, isRoot) => {
        const path = domPath(el);
        try {
            if (!isRoot && occluded(el)) return null;
            const style = window.getComputedStyle(el);
            const rect = el.getBoundingClientRect();
            const className = typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '');

            const transition = (style.transitionProperty || '').toLowerCase();
            const explicitHidden = /(?:^|\\s)(?:hidden|invisible|sr-only|collapse)(?:\\s|$)/i.test(className) ||
                el.hasAttribute('hidden') || el.getAttribute('aria-hidden') === 'true';
            const transientHidden = style.visibility === 'hidden' &&
                (transition.includes('all') || transition.includes('visibility')) && !explicitHidden;
            const visible = style.display !== 'none' &&
                (style.visibility !== 'hidden' || transientHidden) &&
                parseFloat(style.opacity || '1') !== 0 &&
                rect.width > 0 && rect.height > 0;
            if (!visible) return null;

            const key = String(++counter);
            el.setAttribute('data-bake-key', key);

            const tagName = el.tagName.toUpperCase();
            const border = borderOf(style);
            const own = directText(el);
            const inputType = tagName === 'INPUT'
                ? ((el.getAttribute('type') || 'text').trim().toLowerCase() || 'text')
                : '';

            const record = {
                key,
                tagName,
                htmlTag: tagName.toLowerCase(),
                role: el.getAttribute('role') || '',
                inputType,
                className,
                attrs: attrsOf(el),
                domPath: path,
                rect: pageRect(rect),
                isMask: el.getAttribute('data-bake-mask') === '1',
                hasVisual: alphaOf(style.backgroundColor) > 0 ||
                    (style.backgroundImage && style.backgroundImage !== 'none') ||
                    border.width > 0 ||
                    (style.boxShadow && style.boxShadow !== 'none'),
                childCount: el.children.length,
                text: (el.textContent || '').trim(),
                directText: own.text,
                directTextRect: own.rect,
                style: {
                    background: style.background,
                    backgroundColor: style.backgroundColor,
                    backgroundImage: style.backgroundImage,
                    border: style.border,
                    borderWidth: border.width,
                    borderColor: border.color,
                    borderRadius: style.borderRadius,
                    radii: [style.borderTopLeftRadius, style.borderTopRightRadius,
                            style.borderBottomRightRadius, style.borderBottomLeftRadius],
                    boxShadow: style.boxShadow,
                    filter: style.filter,
                    clipPath: style.clipPath,
                    mask: style.mask || style.webkitMask || 'none',
                    maskImage: style.maskImage || style.webkitMaskImage || 'none',
                    backdropFilter: style.backdropFilter || style.webkitBackdropFilter || 'none',
                    mixBlendMode: style.mixBlendMode,
                    overflow: style.overflow,
                    overflowX: style.overflowX,
                    overflowY: style.overflowY,
                    opacity: style.opacity,
                    display: style.display,
                    visibility: style.visibility,
                    position: style.position,
                    zIndex: style.zIndex,
                    transform: style.transform,
                    transformOrigin: style.transformOrigin,
                    pointerEvents: style.pointerEvents,
                    transitionProperty: style.transitionProperty,
                },
                font: {
                    color: style.color,
                    fontSize: style.fontSize,
                    fontFamily: style.fontFamily,
                    alignment: style.textAlign,
                    fontWeight: style.fontWeight,
                    fontStyle: style.fontStyle,
                    lineHeight: style.lineHeight,
                    letterSpacing: style.letterSpacing,
                    textTransform: style.textTransform,
                    textDecoration: style.textDecorationLine || style.textDecoration,
                    textShadow: style.textShadow,
                    whiteSpace: style.whiteSpace,
                    wordBreak: style.wordBreak,
                    wordSpacing: style.wordSpacing,
                    textIndent: style.textIndent,
                    textOverflow: style.textOverflow,
                    direction: style.direction,
                },
                range: inputType === 'range' ? { min: el.min, max: el.max, value: el.value } : null,
                children: [],
            };

            if (!ATOMIC.has(tagName)) {
                for (const child of Array.from(el.children)) {
                    const childRecord = extract(child, false);
                    if (!childRecord) continue;
                    if (childRecord.error) return childRecord;
                    record.children.push(childRecord);
                }
            }
            return record;
        } catch (e) {
            return { error: String((e && e.message) || e), domPath: path };
        }
    };

    return extract(root, true);
}
"""

ASSIGN_IDS_JS = """
(mapping) => {
    let assigned = 0;
    for (const el of Array.from(document.querySelectorAll('[data-bake-key]'))) {
        const id = mapping[el.getAttribute('data-bake-key')];
        if (id) {
            el.setAttribute('data-bake-id', id);
            assigned += 1;
        }
        el.removeAttribute('data-bake-key');
    }
    return assigned;
}
"""

# ============================================================
# IDS
# ============================================================


class IdFactory:
    """uuid4 ids, or stable SHA-1 ids derived from a seed plus a duplicate counter."""

    def __init__(self, mode: str = "uuid"):
        self.mode = mode
        self._duplicates = {}

    def __call__(self, seed) -> str:
        if self.mode != "stable":
            return str(uuid.uuid4())
        key = json.dumps(seed, sort_keys=True)
        index = self._duplicates.get(key, 0)
        self._duplicates[key] = index + 1
        return hashlib.sha1(f"{key}|{index}".encode("utf-8")).hexdigest()[:32]


# ============================================================
# TREE BUILDING (pure)
# ============================================================


def classify(raw: dict, is_root: bool = False):
    """Container / Image / Text, or None when the element carries nothing to bake."""
    tag = raw.get("tagName", "")
    if is_root or raw.get("isMask"):
        return CONTAINER
    if raw.get("range"):
        return CONTAINER
    if tag in ATOMIC_VISUAL_TAGS or raw.get("isIconGlyph"):
        return IMAGE
    if raw.get("childCount", 0) > 0:
        return CONTAINER
    if raw.get("hasVisual"):
        return IMAGE
    if (raw.get("directText") or "").strip():
        return TEXT
    return None


def _device_rect(data: dict, dpr: float, origin_x: float, origin_y: float) -> Rect:
    rect = Rect.from_dict(data) or Rect()
    return Rect(
        (rect.x - origin_x) * dpr,
        (rect.y - origin_y) * dpr,
        rect.width * dpr,
        rect.height * dpr,
    )


def _device_px(value: str, dpr: float) -> str:
    if not value or "px" not in value:
        return value or ""
    return f"{round(parse_px(value) * dpr, 3):g}px"


def text_style_from(font: dict, dpr: float) -> TextStyle:
    font = font or {}
    return TextStyle(
        color=font.get("color", ""),
        font_size=_device_px(font.get("fontSize", ""), dpr),
        font_family=font.get("fontFamily", ""),
        alignment=font.get("alignment", ""),
        font_weight=str(font.get("fontWeight", "")),
        font_style=font.get("fontStyle", ""),
        line_height=_device_px(font.get("lineHeight", ""), dpr),
        letter_spacing=_device_px(font.get("letterSpacing", ""), dpr),
        text_transform=font.get("textTransform", ""),
        text_decoration=font.get("textDecoration", ""),
        text_shadow=font.get("textShadow", ""),
        white_space=font.get("whiteSpace", ""),
        word_break=font.get("wordBreak", ""),
        word_spacing=font.get("wordSpacing", ""),
        text_indent=font.get("textIndent", ""),
        text_overflow=font.get("textOverflow", ""),
        direction=font.get("direction", ""),
    )


def computed_style_from(style: dict, width_css: float, height_css: float, dpr: float) -> ComputedStyle:
    style = style or {}
    return ComputedStyle(
        background=style.get("background", "") or "",
        background_color=style.get("backgroundColor", "") or "",
        background_image=style.get("backgroundImage", "none") or "none",
        border=style.get("border", "") or "",
        border_width=parse_float(style.get("borderWidth"), 0.0),
        border_color=style.get("borderColor", "") or "",
        border_radius=style.get("borderRadius", "0px") or "0px",
        box_shadow=style.get("boxShadow", "none") or "none",
        filter=style.get("filter", "none") or "none",
        clip_path=style.get("clipPath", "none") or "none",
        mask=style.get("mask", "none") or "none",
        mask_image=style.get("maskImage", "none") or "none",
        backdrop_filter=style.get("backdropFilter", "none") or "none",
        mix_blend_mode=style.get("mixBlendMode", "normal") or "normal",
        overflow=style.get("overflow", "visible") or "visible",
        overflow_x=style.get("overflowX", "visible") or "visible",
        overflow_y=style.get("overflowY", "visible") or "visible",
        opacity=parse_float(style.get("opacity"), 1.0),
        display=style.get("display", "") or "",
        visibility=style.get("visibility", "visible") or "visible",
        position=style.get("position", "static") or "static",
        z_index=str(style.get("zIndex", "auto") or "auto"),
        transform=style.get("transform", "none") or "none",
        transform_origin=style.get("transformOrigin", "") or "",
        pointer_events=style.get("pointerEvents", "auto") or "auto",
        transition_property=style.get("transitionProperty", "") or "",
        radii=corner_radii(style.get("radii") or [], width_css, height_css, dpr),
    )


class TreeBuilder:
    """Raw extraction records → immutable AnalysisNode tree."""

    def __init__(self, dpr: float, origin_x: float = 0.0, origin_y: float = 0.0,
                 make_id=None, range_styles: dict = None):
        self.dpr = dpr
        self.origin_x = origin_x
        self.origin_y = origin_y
        self.make_id = make_id or IdFactory("uuid")
        self.range_styles = range_styles or {}
        self.key_to_id = {}

    def build(self, raw: dict, root_rect: Rect = None) -> AnalysisNode:
        root = self._node(raw, is_root=True)
        if root is None:
            raise RootNotFoundError("Root element has no visible area")
        if root_rect is not None:
            root = replace(root, rect=root_rect)
        return root

    def _seed(self, raw: dict, suffix: str = "") -> list:
        return [raw.get("domPath", ""), raw.get("tagName", ""), suffix]

    def _node(self, raw: dict, is_root: bool = False):
        if raw.get("error"):
            raise AnalysisError(raw.get("domPath", ""), raw["error"])

        node_type = classify(raw, is_root=is_root)
        if node_type is None:
            return None
        rect = _device_rect(raw.get("rect"), self.dpr, self.origin_x, self.origin_y)
        if rect.is_empty:
            return None

        node_id = self.make_id(self._seed(raw))
        self.key_to_id[raw.get("key")] = node_id
        css_rect = Rect.from_dict(raw.get("rect")) or Rect()
        style = computed_style_from(raw.get("style"), css_rect.width, css_rect.height, self.dpr)
        text_style = text_style_from(raw.get("font"), self.dpr)
        rotation = rotation_from_transform(style.transform)
        icon = bool(raw.get("isIconGlyph"))

        children = []
        own_text = (raw.get("directText") or "")
        has_own_text = False
        if node_type != TEXT and own_text.strip() and raw.get("directTextRect") and not icon:
            text_rect = _device_rect(raw["directTextRect"], self.dpr, self.origin_x, self.origin_y)
            if not text_rect.is_empty:
                has_own_text = True
                children.append(AnalysisNode(
                    id=self.make_id(self._seed(raw, "text")),
                    type=TEXT,
                    tag_name="#TEXT",
                    html_tag="#text",
                    rect=text_rect,
                    dom_path=f"{raw.get('domPath', '')}::text",
                    rotation=rotation,
                    text=own_text,
                    text_style=text_style,
                    synthesized="text",
                ))

        if raw.get("range"):
            children.extend(self._range_parts(raw, node_id, css_rect))

        for child_raw in raw.get("children") or []:
            child = self._node(child_raw)
            if child is not None:
                children.append(child)

        return AnalysisNode(
            id=node_id,
            type=node_type,
            tag_name=raw.get("tagName", ""),
            html_tag=raw.get("htmlTag", ""),
            role=raw.get("role", "") or "",
            input_type=raw.get("inputType", "") or "",
            classes=tuple(c for c in (raw.get("className") or "").split() if c),
            attrs=tuple((k, v) for k, v in raw.get("attrs") or []),
            dom_path=raw.get("domPath", ""),
            rect=rect,
            rotation=rotation,
            style=style,
            text=own_text if node_type == TEXT else (raw.get("text") or ""),
            text_style=text_style,
            has_visual=bool(raw.get("hasVisual")),
            has_own_text=has_own_text,
            is_root=is_root,
            is_mask=bool(raw.get("isMask")),
            is_icon_glyph=icon,
            children=tuple(children),
        )

    def _range_parts(self, raw: dict, control_id: str, css_rect: Rect) -> list:
        styles = self.range_styles.get(raw.get("key"))
        track_style = styles.track if styles else {}
        thumb_style = styles.thumb if styles else {}
        info = raw.get("range") or {}
        ratio = value_ratio(info.get("min"), info.get("max"), info.get("value"))
        parts = range_geometry(css_rect.width, css_rect.height, track_style, thumb_style, ratio)

        nodes = []
        for part in parts:
            part_rect = Rect(
                (css_rect.x + part.offset_x - self.origin_x) * self.dpr,
                (css_rect.y + part.offset_y - self.origin_y) * self.dpr,
                part.width * self.dpr,
                part.height * self.dpr,
            )
            if part_rect.is_empty:
                continue
            nodes.append(AnalysisNode(
                id=self.make_id(self._seed(raw, part.part)),
                type=IMAGE,
                tag_name=f"#RANGE-{part.part.upper()}",
                html_tag=f"range-{part.part}",
                rect=part_rect,
                input_type="range",
                dom_path=f"{raw.get('domPath', '')}::{part.part}",
                has_visual=True,
                synthesized=f"range-{part.part}",
                range_part=part,
                source_id=control_id,
            ))
        return nodes


def mark_icon_glyphs(raw: dict):
    """Fill isIconGlyph from class/font hints so classification stays in Python."""
    stack = [raw]
    while stack:
        current = stack.pop()
        if not current or current.get("error"):
            continue
        font = current.get("font") or {}
        current["isIconGlyph"] = is_icon_glyph(current.get("className", ""), font.get("fontFamily", ""))
        stack.extend(current.get("children") or [])


def find_error(raw: dict):
    stack = [raw]
    while stack:
        current = stack.pop()
        if not current:
            continue
        if current.get("error"):
            return current
        stack.extend(current.get("children") or [])
    return None


def range_records(raw: dict) -> list:
    found = []
    stack = [raw]
    while stack:
        current = stack.pop()
        if not current:
            continue
        if current.get("range"):
            found.append(current)
        stack.extend(current.get("children") or [])
    return found


# ============================================================
# ANALYZER
# ============================================================


class Analyzer:
    def __init__(self, page, settings: Settings, resolution: Resolution):
        self.page = page
        self.settings = settings
        self.resolution = resolution
        self.pseudo = PseudoStyleResolver(page)

    async def run(self) -> AnalysisTree:
        await self.wait_for_stability()
        mask = await self.detect_mask()
        root_info = await self.resolve_root()

        raw = await self.page.evaluate(EXTRACT_JS)
        if raw is None:
            raise RootNotFoundError("Root element has no visible content")
        failed = find_error(raw)
        if failed:
            raise AnalysisError(failed.get("domPath", ""), failed["error"])
        mark_icon_glyphs(raw)

        root_rect_css = Rect.from_dict(root_info.get("rect")) or Rect()
        range_styles = {}
        for record in range_records(raw):
            control = Rect.from_dict(record.get("rect")) or Rect()
            selector = f'[data-bake-key="{record["key"]}"]'
            range_styles[record["key"]] = await self.pseudo.resolve_range(selector, control.width, control.height)

        dpr = self.resolution.dpr
        builder = TreeBuilder(
            dpr,
            origin_x=root_rect_css.x,
            origin_y=root_rect_css.y,
            make_id=IdFactory(self.settings.id_mode),
            range_styles=range_styles,
        )
        root = builder.build(raw, root_rect=Rect(0, 0, root_rect_css.width * dpr, root_rect_css.height * dpr))
        assigned = await self.page.evaluate(ASSIGN_IDS_JS, {k: v for k, v in builder.key_to_id.items() if k})
        print(f"[analyzer] {count_nodes(root)} nodes, {assigned} elements tagged, root via {root_info.get('how')}")

        return AnalysisTree(
            root=root,
            dpr=dpr,
            viewport=Rect(
                0, 0,
                self.resolution.logical_width * dpr,
                self.resolution.logical_height * dpr,
            ),
            origin_x=root_rect_css.x,
            origin_y=root_rect_css.y,
            mask=mask,
        )

    async def wait_for_stability(self):
        await self.page.evaluate(STABILITY_JS, {
            "fontTimeout": self.settings.font_ready_timeout_ms,
            "delay": self.settings.settle_delay_ms,
        })

    async def detect_mask(self) -> MaskInfo:
        info = await self.page.evaluate(DETECT_MASK_JS) or {}
        if not info.get("hasMask"):
            return MaskInfo()
        mask = MaskInfo(has_mask=True, z_index=int(info.get("zIndex") or 0), rect=Rect.from_dict(info.get("rect")))
        print(f"[analyzer] full-screen mask detected (z={mask.z_index})")
        return mask

    async def resolve_root(self) -> dict:
        selector = (self.settings.root_selector or "auto").strip() or "auto"
        info = await self.page.evaluate(RESOLVE_ROOT_JS, {"selector": selector})
        if not info or not info.get("found"):
            reason = (info or {}).get("reason", "root not found")
            raise RootNotFoundError(reason)
        return info
