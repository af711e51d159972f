"""
Capture executor.

Runs CaptureTasks one at a time against the live page. Every task is a
transaction: the setup script mutates the document and returns an undo log,
the screenshot is taken, and the cleanup script replays the log backwards.
Cleanup runs even when setup or the screenshot fails.
"""

import math
import os
from dataclasses import dataclass, field, replace
from typing import Optional

from htmlbake.config import Resolution
from htmlbake.css import outpaint_pad
from htmlbake.errors import CaptureError
from htmlbake.image_utils import save_png, size_mismatch
from htmlbake.models import (
    BACKGROUND_STACK,
    CAPTURE_MODES,
    IN_PLACE,
    AnalysisNode,
    CaptureFailure,
    CaptureMetadata,
    CaptureTask,
)

# ============================================================
# BROWSER SCRIPTS
# ============================================================

SETUP_JS = """
(args) => {
    const txId = args.txId;
    const undo = [];
    const seen = new Set();
    let touchCount = 0;

    const touchKey = (node) => {
        let key = node.getAttribute('data-bake-touch');
        if (!key) {
            key = `${txId}-${++touchCount}`;
            // restored last, so the original style text comes back verbatim
            undo.push({
                kind: 'attr', target: key, prop: 'style',
                present: node.hasAttribute('style'), value: node.getAttribute('style'),
            });
            node.setAttribute('data-bake-touch', key);
        }
        return key;
    };
    const setStyle = (node, prop, value, priority = 'important') => {
        if (!node || node.nodeType !== 1) return;
        const target = touchKey(node);
        const mark = `${target}|style|${prop}`;
        if (!seen.has(mark)) {
            seen.add(mark);
            undo.push({
                kind: 'style', target, prop,
                value: node.style.getPropertyValue(prop),
                priority: node.style.getPropertyPriority(prop),
            });
        }
        if (value == null) node.style.removeProperty(prop);
        else node.style.setProperty(prop, value, priority);
    };
    const setAttr = (node, name, value) => {
        const target = touchKey(node);
        const mark = `${target}|attr|${name}`;
        if (!seen.has(mark)) {
            seen.add(mark);
            undo.push({ kind: 'attr', target, prop: name, present: node.hasAttribute(name), value: node.getAttribute(name) });
        }
        node.setAttribute(name, value);
    };
    const setValue = (node, value) => {
        const target = touchKey(node);
        undo.push({ kind: 'value', target, value: typeof node.value === 'string' ? node.value : '' });
        try {
            node.value = value;
        } catch (_) {
            // read-only control value
        }
    };
    const hideDirectText = (node) => {
        Array.from(node.childNodes).forEach((child, index) => {
            if (child.nodeType !== Node.TEXT_NODE) return;
            const raw = child.textContent || '';
            if (!raw.trim()) return;
            undo.push({ kind: 'text', target: touchKey(node), index, value: raw });
            child.textContent = '';
        });
    };
    const addMarker = (node) => {
        node.setAttribute('data-bake-tx', txId);
        if (!undo.some((rec) => rec.kind === 'remove')) {
            undo.unshift({ kind: 'remove', selector: `[data-bake-tx="${txId}"]` });
        }
    };
    const addSheet = (lines) => {
        const sheet = document.createElement('style');
        sheet.id = 'bake-isolation-style';
        sheet.textContent = lines.join('\\n');
        addMarker(sheet);
        document.head.appendChild(sheet);
    };
    const byId = (id) => document.querySelector(`[data-bake-id="${id}"]`);
    const viewRect = (r) => ({ x: r.left, y: r.top, width: r.width, height: r.height });

    const NO_MOTION = [
        '*, *::before, *::after {',
        '  transition-property: none !important;',
        '  transition-duration: 0s !important;',
        '  transition-delay: 0s !important;',
        '  animation: none !important;',
        '}',
    ];
    const NO_PAGE_PAINT = [
        'html, body {',
        '  background: transparent !important;',
        '  background-color: transparent !important;',
        '  background-image: none !important;',
        '}',
        'html::before, html::after, body::before, body::after {',
        '  content: none !important;',
        '  display: none !important;',
        '}',
    ];
    const NON_TEXT_INPUTS = new Set(['button', 'submit', 'reset', 'checkbox', 'radio', 'file', 'range',
                                     'color', 'image', 'hidden']);
    const isTextControl = (node) => {
        const tag = (node.tagName || '').toLowerCase();
        if (tag === 'textarea') return true;
        if (tag !== 'input') return false;
        const type = (node.getAttribute('type') || node.type || 'text').trim().toLowerCase() || 'text';
        return !NON_TEXT_INPUTS.has(type);
    };
    const hideControlText = (node) => {
        if (!isTextControl(node)) return;
        setValue(node, '');
        if (node.hasAttribute('value')) setAttr(node, 'value', '');
        if (node.hasAttribute('placeholder')) setAttr(node, 'placeholder', '');
        setStyle(node, 'color', 'transparent');
        setStyle(node, '-webkit-text-fill-color', 'transparent');
        setStyle(node, 'text-shadow', 'none');
        setStyle(node, 'caret-color', 'transparent');
    };
    const PAINT_PROPS = [
        ['background', 'transparent'], ['background-color', 'transparent'], ['background-image', 'none'],
        ['border-color', 'transparent'], ['box-shadow', 'none'], ['filter', 'none'],
        ['backdrop-filter', 'none'], ['-webkit-backdrop-filter', 'none'],
    ];
    const stripPaint = (node) => {
        for (const [prop, value] of PAINT_PROPS) setStyle(node, prop, value);
    };
    const revealChain = (node) => {
        const chain = [];
        let cursor = node;
        while (cursor && cursor.nodeType === 1) {
            chain.push(cursor);
            setStyle(cursor, 'visibility', 'visible');
            cursor = cursor.parentElement;
        }
        return chain;
    };
    const stripRotation = (transform) => {
        if (!transform || transform === 'none') return null;
        const m = transform.match(/^matrix\\(([^)]+)\\)/);
        if (!m) return null;
        const [a, b, c, d, e, f] = m[1].split(',').map((v) => parseFloat(v.trim()));
        const angle = Math.atan2(b, a);
        if (Math.abs(angle) < 1e-6) return null;
        const cos = Math.cos(angle);
        const sin = Math.sin(angle);
        return `matrix(${cos * a + sin * b}, ${-sin * a + cos * b}, ${cos * c + sin * d}, ${-sin * c + cos * d}, ${e}, ${f})`;
    };
    const scrollHome = () => {
        if (window.scrollX !== 0 || window.scrollY !== 0) {
            undo.push({ kind: 'scroll', x: window.scrollX, y: window.scrollY });
            window.scrollTo(0, 0);
        }
    };

    const cloneSetup = () => {
        const el = byId(args.nodeId);
        if (!el) return { vanished: 'missing' };
        scrollHome();
        const rect = el.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) return { vanished: 'degenerate-rect' };
        const style = window.getComputedStyle(el);
        const pad = args.pad;

        const clone = el.cloneNode(true);
        for (const node of [clone, ...Array.from(clone.querySelectorAll('[data-bake-id], [data-bake-touch]'))]) {
            node.removeAttribute('data-bake-id');
            node.removeAttribute('data-bake-touch');
        }
        const COPY = [
            'backgroundColor', 'backgroundImage', 'backgroundSize', 'backgroundPosition', 'backgroundRepeat',
            'backgroundOrigin', 'backgroundClip', 'backgroundAttachment',
            'borderTopWidth', 'borderRightWidth', 'borderBottomWidth', 'borderLeftWidth',
            'borderTopColor', 'borderRightColor', 'borderBottomColor', 'borderLeftColor',
            'borderTopStyle', 'borderRightStyle', 'borderBottomStyle', 'borderLeftStyle',
            'borderRadius', 'boxShadow', 'filter', 'opacity', 'clipPath', 'maskImage', 'mask',
            'mixBlendMode', 'backdropFilter', 'webkitBackdropFilter', 'overflow', 'overflowX', 'overflowY',
            'color', 'fontFamily', 'fontSize', 'fontWeight', 'fontStyle', 'lineHeight', 'letterSpacing',
            'textAlign', 'textTransform', 'textDecoration', 'textShadow', 'whiteSpace', 'boxSizing',
            'paddingTop', 'paddingRight', 'paddingBottom', 'paddingLeft', 'display',
        ];
        for (const prop of COPY) clone.style[prop] = style[prop];
        if (style.display === 'inline') clone.style.display = 'inline-block';
        Object.assign(clone.style, {
            position: 'fixed',
            left: `${pad}px`,
            top: `${pad}px`,
            width: `${rect.width}px`,
            height: `${rect.height}px`,
            margin: '0',
            transform: 'none',
            transformOrigin: '0 0',
            zIndex: '2147483647',
            visibility: 'visible',
        });
        if (args.decoupleOpacity) clone.style.opacity = '1';
        if (args.hideChildren) {
            clone.innerHTML = '';
        } else if (args.hideOwnText) {
            for (const child of Array.from(clone.childNodes)) {
                if (child.nodeType === Node.TEXT_NODE && (child.textContent || '').trim()) child.textContent = '';
            }
            if (isTextControl(clone)) {
                clone.value = '';
                clone.setAttribute('value', '');
                if (clone.hasAttribute('placeholder')) clone.setAttribute('placeholder', '');
                clone.style.color = 'transparent';
                clone.style.webkitTextFillColor = 'transparent';
            }
        }
        clone.setAttribute('data-bake-clone', 'true');
        addMarker(clone);
        document.body.appendChild(clone);
        addSheet([
            ...NO_MOTION,
            ...NO_PAGE_PAINT,
            'body > *:not([data-bake-clone="true"]) { visibility: hidden !important; }',
        ]);
        return {
            clip: {
                x: 0,
                y: 0,
                width: Math.max(1, Math.ceil(rect.width + pad * 2)),
                height: Math.max(1, Math.ceil(rect.height + pad * 2)),
            },
            element: { x: pad, y: pad, width: rect.width, height: rect.height },
        };
    };

    const inPlaceSetup = () => {
        const el = byId(args.nodeId);
        if (!el) return { vanished: 'missing' };
        scrollHome();
        const rect = el.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) return { vanished: 'degenerate-rect' };

        const lines = [...NO_MOTION];
        if (!args.preserveSceneUnderlay) {
            lines.push(...NO_PAGE_PAINT, 'body * { visibility: hidden !important; }');
        }
        const chain = revealChain(el);
        if (args.revealDescendants) {
            lines.push(`[data-bake-touch="${touchKey(el)}"] * { visibility: visible !important; }`);
        }
        addSheet(lines);

        if (args.suppressAncestorPaint) {
            for (const ancestor of chain) {
                if (ancestor !== el) stripPaint(ancestor);
            }
        }
        if (args.hideChildren) {
            for (const child of Array.from(el.querySelectorAll('*'))) setStyle(child, 'visibility', 'hidden');
            setStyle(el, 'color', 'transparent');
            setStyle(el, '-webkit-text-fill-color', 'transparent');
            setStyle(el, 'text-shadow', 'none');
        }
        if (args.hideOwnText) {
            if (args.preserveOwnTextGeometry) {
                const computed = window.getComputedStyle(el);
                const w = parseFloat(computed.width) > 0 ? parseFloat(computed.width) : Math.max(1, el.offsetWidth || 0);
                const h = parseFloat(computed.height) > 0 ? parseFloat(computed.height) : Math.max(1, el.offsetHeight || 0);
                if (computed.display === 'inline') setStyle(el, 'display', 'inline-block');
                setStyle(el, 'width', `${Math.max(1, w)}px`);
                setStyle(el, 'height', `${Math.max(1, h)}px`);
                setStyle(el, 'min-width', `${Math.max(1, w)}px`);
                setStyle(el, 'min-height', `${Math.max(1, h)}px`);
            }
            hideControlText(el);
            hideDirectText(el);
        }
        if (args.decoupleOpacity) setStyle(el, 'opacity', '1');
        if (args.preserveSceneUnderlay && args.suppressUnderlayFaintBorder) {
            for (const [prop, value] of [
                ['border-width', '0'], ['border-style', 'none'], ['border-color', 'transparent'],
                ['border-image', 'none'], ['outline', 'none'],
            ]) setStyle(el, prop, value);
        }
        if (args.neutralizeTransforms) {
            for (const node of chain) {
                const computed = window.getComputedStyle(node);
                const override = stripRotation(computed.transform);
                if (!override) continue;
                setStyle(node, 'transform', override);
                setStyle(node, 'transform-origin', computed.transformOrigin || '0 0');
                setStyle(node, 'rotate', '0deg');
            }
        }

        const pad = args.pad;
        const finalRect = el.getBoundingClientRect();
        return {
            clip: {
                x: finalRect.left - pad,
                y: finalRect.top - pad,
                width: finalRect.width + pad * 2,
                height: finalRect.height + pad * 2,
            },
            element: viewRect(finalRect),
        };
    };

    const rangePartSetup = () => {
        const el = byId(args.sourceNodeId);
        if (!el) return { vanished: 'missing' };
        scrollHome();
        const rect = el.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) return { vanished: 'degenerate-rect' };
        const part = args.part;
        const other = part === 'track' ? '-webkit-slider-thumb' : '-webkit-slider-runnable-track';
        const selector = `[data-bake-id="${args.sourceNodeId}"]`;

        const chain = revealChain(el);
        addSheet([
            ...NO_MOTION,
            ...NO_PAGE_PAINT,
            `${selector}::${other} {`,
            '  box-shadow: none !important;',
            '  border-color: transparent !important;',
            '  background: transparent !important;',
            '}',
            'body * { visibility: hidden !important; }',
        ]);
        for (const ancestor of chain) {
            if (ancestor !== el) stripPaint(ancestor);
        }
        setStyle(el, 'background', 'transparent');
        setStyle(el, 'background-color', 'transparent');
        setStyle(el, 'box-shadow', 'none');
        setStyle(el, 'border-color', 'transparent');

        const g = args.geometry;
        const element = { x: rect.left + g.x, y: rect.top + g.y, width: g.width, height: g.height };
        return {
            clip: {
                x: element.x - g.pad,
                y: element.y - g.pad,
                width: element.width + g.pad * 2,
                height: element.height + g.pad * 2,
            },
            element,
        };
    };

    const backgroundStackSetup = () => {
        const base = byId(args.nodeId);
        if (!base) return { vanished: 'missing' };
        scrollHome();
        const rect = base.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) return { vanished: 'degenerate-rect' };

        const lines = [...NO_MOTION, ...NO_PAGE_PAINT, 'body * { visibility: hidden !important; }'];
        revealChain(base);
        for (const id of args.stackIds) {
            const overlay = byId(id);
            if (!overlay) continue;
            revealChain(overlay);
            lines.push(`[data-bake-touch="${touchKey(overlay)}"] * { visibility: visible !important; }`);
        }
        addSheet(lines);
        return { clip: viewRect(rect), element: viewRect(rect) };
    };

    try {
        const setups = {
            clone: cloneSetup,
            inPlace: inPlaceSetup,
            rangePart: rangePartSetup,
            backgroundStack: backgroundStackSetup,
        };
        const setup = setups[args.mode];
        if (!setup) return { error: `unknown capture mode ${args.mode}`, undo };
        return { ...setup(), undo };
    } catch (e) {
        return { error: String((e && e.message) || e), undo };
    }
}
"""

CLEANUP_JS = """
({ txId, undo }) => {
    const errors = [];
    const find = (key) => document.querySelector(`[data-bake-touch="${key}"]`);
    for (let i = undo.length - 1; i >= 0; i -= 1) {
        const rec = undo[i];
        try {
            if (rec.kind === 'remove') {
                for (const node of Array.from(document.querySelectorAll(rec.selector))) node.remove();
                continue;
            }
            if (rec.kind === 'scroll') {
                window.scrollTo(rec.x, rec.y);
                continue;
            }
            const node = find(rec.target);
            if (!node) continue;
            if (rec.kind === 'style') {
                if (rec.value) node.style.setProperty(rec.prop, rec.value, rec.priority || '');
                else node.style.removeProperty(rec.prop);
            } else if (rec.kind === 'attr') {
                if (rec.present) node.setAttribute(rec.prop, rec.value == null ? '' : rec.value);
                else node.removeAttribute(rec.prop);
            } else if (rec.kind === 'value') {
                node.value = rec.value;
            } else if (rec.kind === 'text') {
                const child = node.childNodes[rec.index];
                if (child && child.nodeType === Node.TEXT_NODE) child.textContent = rec.value;
            }
        } catch (e) {
            errors.push(String((e && e.message) || e));
        }
    }
    for (const node of Array.from(document.querySelectorAll(`[data-bake-touch^="${txId}-"]`))) {
        node.removeAttribute('data-bake-touch');
    }
    for (const node of Array.from(document.querySelectorAll(`[data-bake-tx="${txId}"]`))) node.remove();
    return { reverted: undo.length, errors };
}
"""

# ============================================================
# TRANSACTION
# ============================================================


@dataclass
class CaptureTransaction:
    """Undo log owned by one task: filled by setup, consumed once by cleanup."""
    tx_id: str
    undo: list = field(default_factory=list)
    closed: bool = False

    def absorb(self, records):
        if records:
            self.undo.extend(records)

    def cleanup_args(self) -> dict:
        return {"txId": self.tx_id, "undo": list(self.undo)}


# ============================================================
# PURE HELPERS
# ============================================================


def normalize_clip(clip: Optional[dict]) -> Optional[dict]:
    """Non-negative origin, integer box, at least 1x1. None for an empty clip."""
    if not clip:
        return None
    try:
        width = float(clip.get("width"))
        height = float(clip.get("height"))
    except (TypeError, ValueError):
        return None
    if not (width > 0 and height > 0) or math.isinf(width) or math.isinf(height):
        return None
    x = float(clip.get("x") or 0)
    y = float(clip.get("y") or 0)
    nx = max(0.0, x)
    ny = max(0.0, y)
    return {
        "x": round(nx),
        "y": round(ny),
        "width": max(1, round(max(1.0, width - (nx - x)))),
        "height": max(1, round(max(1.0, height - (ny - y)))),
    }


def _r(value: float, digits: int = 3) -> float:
    return round(float(value), digits) + 0.0


def build_metadata(task: CaptureTask, clip: dict, state: dict, dpr: float) -> CaptureMetadata:
    """Capture geometry in device pixels (css px * dpr)."""
    element = state.get("element") or {}
    ex = float(element.get("x", clip["x"]))
    ey = float(element.get("y", clip["y"]))
    ew = float(element.get("width", clip["width"]))
    eh = float(element.get("height", clip["height"]))

    decoupled = bool(task.decouple_opacity)
    return CaptureMetadata(
        mode=task.mode,
        output_name=task.output_name,
        image_width=_r(clip["width"] * dpr),
        image_height=_r(clip["height"] * dpr),
        content_offset_x=_r(max(0.0, ex - clip["x"]) * dpr),
        content_offset_y=_r(max(0.0, ey - clip["y"]) * dpr),
        content_width=_r(ew * dpr),
        content_height=_r(eh * dpr),
        rotation_baked=bool(task.rotation_baked) and task.mode == IN_PLACE,
        rotation_original=round(task.rotation_original, 6),
        opacity_decoupled=decoupled,
        render_opacity=round(task.render_opacity, 6) if decoupled else 1.0,
    )


def setup_args(task: CaptureTask, node: Optional[AnalysisNode], tx_id: str) -> dict:
    pad = 0.0
    geometry = None
    if node is not None:
        pad = outpaint_pad(node.style.box_shadow, node.style.filter)
        if node.range_part is not None:
            part = node.range_part
            geometry = {
                "x": part.offset_x,
                "y": part.offset_y,
                "width": part.width,
                "height": part.height,
                "pad": part.shadow_pad,
            }
    return {
        "txId": tx_id,
        "mode": task.mode,
        "nodeId": task.node_id,
        "sourceNodeId": task.capture_source_node_id or task.node_id,
        "part": task.range_part,
        "geometry": geometry,
        "stackIds": list(task.background_stack_node_ids),
        "pad": 0.0 if task.mode == BACKGROUND_STACK else pad,
        "hideChildren": task.hide_children,
        "hideOwnText": task.hide_own_text,
        "neutralizeTransforms": task.neutralize_transforms,
        "suppressAncestorPaint": task.suppress_ancestor_paint,
        "preserveOwnTextGeometry": task.preserve_own_text_geometry,
        "preserveSceneUnderlay": task.preserve_scene_underlay,
        "suppressUnderlayFaintBorder": task.suppress_underlay_faint_border,
        "decoupleOpacity": task.decouple_opacity,
        "revealDescendants": bool(node is not None and node.is_atomic_visual),
    }


# ============================================================
# EXECUTOR
# ============================================================


@dataclass
class ExecutionResult:
    metadata: dict = field(default_factory=dict)      # node id → CaptureMetadata
    failures: list = field(default_factory=list)      # CaptureFailure


class Executor:
    def __init__(self, page, resolution: Resolution, images_dir: str):
        self.page = page
        self.resolution = resolution
        self.images_dir = images_dir
        self._tx_counter = 0

    async def run(self, tasks: list, nodes: dict) -> ExecutionResult:
        """Execute tasks strictly in order. `nodes` maps node id → AnalysisNode."""
        result = ExecutionResult()
        os.makedirs(self.images_dir, exist_ok=True)
        for task in tasks:
            try:
                meta = await self.capture(task, nodes.get(task.node_id))
            except CaptureError as e:
                print(f"  [executor] {task.output_name} failed: {e}")
                result.failures.append(CaptureFailure(task.node_id, task.output_name, str(e)))
                continue
            result.metadata[task.node_id] = meta
        print(f"[executor] {len(result.metadata)} captured, {len(result.failures)} failed")
        return result

    async def capture(self, task: CaptureTask, node: Optional[AnalysisNode] = None) -> CaptureMetadata:
        """
        One image for one task. Raises CaptureError when the node vanished,
        its rect is degenerate, or setup/screenshot failed; no file is
        written in that case. The document is restored either way.
        """
        if task.mode not in CAPTURE_MODES:
            raise CaptureError(f"unknown capture mode {task.mode}")

        self._tx_counter += 1
        tx = CaptureTransaction(tx_id=f"bk{self._tx_counter}")
        try:
            try:
                state = await self.page.evaluate(SETUP_JS, setup_args(task, node, tx.tx_id))
            except Exception as e:
                raise CaptureError(f"setup: {e}") from e
            state = state or {}
            tx.absorb(state.get("undo"))
            if state.get("error"):
                raise CaptureError(f"setup: {state['error']}")
            if state.get("vanished"):
                raise CaptureError(f"vanished: {state['vanished']}")

            clip = normalize_clip(state.get("clip"))
            if clip is None:
                raise CaptureError("vanished: degenerate-clip")

            path = os.path.join(self.images_dir, f"{task.output_name}.png")
            size = await self._screenshot(path, clip, omit_background=True)
            meta = build_metadata(task, clip, state, self.resolution.dpr)
            if size_mismatch(meta.image_width, meta.image_height, size):
                print(
                    f"  [executor] {task.output_name}: image is {size[0]}x{size[1]}, "
                    f"expected {meta.image_width}x{meta.image_height}"
                )
                meta = _with_image_size(meta, size)
            return meta
        finally:
            await self._cleanup(tx)

    async def capture_background(self, origin_x: float, origin_y: float, path: str) -> tuple:
        """Logical canvas at the root origin, page background included."""
        await self.page.evaluate("() => window.scrollTo(0, 0)")
        clip = normalize_clip({
            "x": origin_x,
            "y": origin_y,
            "width": self.resolution.logical_width,
            "height": self.resolution.logical_height,
        })
        size = await self._screenshot(path, clip, omit_background=False)
        print(f"[executor] background {size[0]}x{size[1]} → {path}")
        return size

    async def _screenshot(self, path: str, clip: dict, omit_background: bool) -> tuple:
        """Screenshot `clip`, growing the viewport for it when needed and restoring it after."""
        original = dict(self.page.viewport_size or self.resolution.viewport())
        need_w = math.ceil(clip["x"] + clip["width"])
        need_h = math.ceil(clip["y"] + clip["height"])
        enlarged = need_w > original["width"] or need_h > original["height"]
        try:
            if enlarged:
                await self.page.set_viewport_size({
                    "width": max(original["width"], need_w),
                    "height": max(original["height"], need_h),
                })
            png = await self.page.screenshot(clip=clip, omit_background=omit_background)
        except Exception as e:
            raise CaptureError(f"screenshot: {e}") from e
        finally:
            if enlarged:
                try:
                    await self.page.set_viewport_size(original)
                except Exception as e:
                    print(f"  [executor] viewport restore failed: {e}")
        return save_png(png, path)

    async def _cleanup(self, tx: CaptureTransaction):
        if tx.closed:
            return
        tx.closed = True
        try:
            outcome = await self.page.evaluate(CLEANUP_JS, tx.cleanup_args()) or {}
        except Exception as e:
            print(f"  [executor] cleanup {tx.tx_id} failed: {e}")
            return
        for error in outcome.get("errors") or []:
            print(f"  [executor] cleanup {tx.tx_id}: {error}")


def _with_image_size(meta: CaptureMetadata, size: tuple) -> CaptureMetadata:
    return replace(meta, image_width=float(size[0]), image_height=float(size[1]))
