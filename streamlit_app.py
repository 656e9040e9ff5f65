"""
Pixel Rearrange, gallery edition

Run with:
    streamlit run streamlit_app.py
"""

from __future__ import annotations

import io
import time

import numpy as np
import streamlit as st
from PIL import Image, ImageDraw

from pixel_rearrange import progress as msgs
from pixel_rearrange.config import (
    Algorithm,
    GenerationSettings,
    GeneticParams,
    RearrangeConfig,
)
from pixel_rearrange.engine import prepare_run, start_generation
from pixel_rearrange.errors import RearrangeError
from pixel_rearrange.preset import UnprocessedPreset

# -- Page config -------------------------------------------------------
st.set_page_config(
    page_title="Pixel Rearrange",
    page_icon=None,
    layout="wide",
    initial_sidebar_state="collapsed",
)

_DEFAULTS = RearrangeConfig()

# -- CSS ---------------------------------------------------------------
st.markdown("""
<style>
    @import url('https://fonts.googleapis.com/css2?family=Cormorant+Garamond:ital,wght@0,300;0,400;1,300&family=Inter:wght@200;300;400&display=swap');

    .stApp {
        background-color: #faf9f6;
        color: #2a2a2a;
        font-family: 'Inter', 'Helvetica Neue', sans-serif;
    }
    .block-container {
        max-width: 1000px;
        padding-top: 3.5rem;
        padding-bottom: 4rem;
    }
    .gallery-title {
        font-family: 'Cormorant Garamond', 'Georgia', serif;
        font-size: 2.8rem;
        font-weight: 300;
        letter-spacing: 0.06em;
        text-align: center;
        color: #1a1a1a;
        border-bottom: 1px solid #1a1a1a;
        padding-bottom: 0.6rem;
        margin-bottom: 0.5rem;
    }
    .gallery-subtitle {
        font-size: 0.75rem;
        font-weight: 300;
        letter-spacing: 0.04em;
        line-height: 1.8;
        margin-bottom: 3rem;
    }
    .label-detail {
        font-family: 'Cormorant Garamond', serif;
        font-style: italic;
        text-align: center;
        color: #777;
    }
    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}
    header {visibility: hidden;}
</style>
""", unsafe_allow_html=True)


# -- Helpers -----------------------------------------------------------

def _add_passepartout(img: Image.Image, border: int = 20) -> Image.Image:
    w, h = img.size
    bg = (250, 249, 246)
    canvas = Image.new("RGB", (w + border * 2, h + border * 2), bg)
    canvas.paste(img, (border, border))
    draw = ImageDraw.Draw(canvas)
    draw.rectangle(
        [border - 1, border - 1, border + w, border + h],
        outline=(224, 222, 216), width=1,
    )
    return canvas


def _upscaled(array: np.ndarray, factor: int) -> Image.Image:
    img = Image.fromarray(np.ascontiguousarray(array, dtype=np.uint8)).convert("RGB")
    return img.resize((img.width * factor, img.height * factor), Image.NEAREST)


def _read_upload(key: str, label: str) -> np.ndarray | None:
    uploaded = st.file_uploader(
        label, type=["jpg", "jpeg", "png", "webp", "bmp", "jfif"], key=key,
    )
    # Persist uploads in session state so control changes don't clear them
    if uploaded is not None:
        st.session_state[f"{key}_data"] = uploaded.getvalue()
    data = st.session_state.get(f"{key}_data")
    if data is None:
        return None
    return np.array(Image.open(io.BytesIO(data)).convert("RGB"), dtype=np.uint8)


# -- Title -------------------------------------------------------------
st.markdown(
    '<div class="gallery-title">Pixel Rearrange</div>',
    unsafe_allow_html=True,
)
st.markdown(
    '<div class="gallery-subtitle">'
    "Upload a source and a target. Every pixel of the source is moved, never "
    "recoloured, so that the whole picture approximates the target. The "
    "optimal solver ranks pixels by brightness; the genetic solver searches "
    "permutations and can also match full colour."
    "</div>",
    unsafe_allow_html=True,
)

# -- Controls ----------------------------------------------------------
ctrl1, ctrl2, ctrl3 = st.columns(3)
with ctrl1:
    sidelen = st.slider("Side (px)", 8, 256, _DEFAULTS.sidelen)
with ctrl2:
    algorithm = st.radio("Solver", [a.value for a in Algorithm], horizontal=True)
with ctrl3:
    upscale = st.slider("Upscale", 1, 8, _DEFAULTS.pixel_upscale)

color_space = "luminance"
generations = GeneticParams().generations
if algorithm == Algorithm.GENETIC.value:
    gcol1, gcol2 = st.columns(2)
    with gcol1:
        color_space = st.selectbox("Match on", ["luminance", "lab", "rgb"])
    with gcol2:
        generations = st.slider("Generations", 10, 2000, generations, step=10)

st.markdown("---")

up1, up2 = st.columns(2)
with up1:
    source = _read_upload("source", "Source image")
with up2:
    target = _read_upload("target", "Target image")

handle = st.session_state.get("handle")

if handle is not None and handle.is_alive():
    if st.button("STOP", use_container_width=True):
        handle.cancel()

if source is not None and target is not None:
    if st.button("REARRANGE", type="primary", use_container_width=True):
        settings = GenerationSettings(
            name="upload",
            sidelen=sidelen,
            algorithm=Algorithm.parse(algorithm),
            color_space=color_space,
            genetic=GeneticParams(generations=generations),
        )
        try:
            run = prepare_run(UnprocessedPreset.from_array("upload", source), target, settings)
        except RearrangeError as exc:
            st.error(str(exc))
            st.stop()
        # Only one run at a time; the replaced one would never be drained
        if handle is not None and handle.is_alive():
            handle.cancel()
            handle.channel.close()
        st.session_state.started = time.perf_counter()
        handle = start_generation(
            run,
            channel_size=_DEFAULTS.channel_size,
            send_timeout=_DEFAULTS.send_timeout,
        )
        st.session_state.handle = handle
        st.session_state.outcome = None

if handle is not None and st.session_state.get("outcome") is None:
    bar = st.progress(0.0)
    preview = st.empty()
    for msg in handle.messages():
        if isinstance(msg, msgs.Progress):
            bar.progress(msg.fraction)
        elif isinstance(msg, msgs.PreviewUpdate):
            preview.image(_upscaled(msg.image, upscale), use_container_width=True)
    handle.join()
    st.session_state.outcome = handle.channel.terminal
    bar.empty()
    preview.empty()
    st.session_state.elapsed = time.perf_counter() - st.session_state.started

outcome = st.session_state.get("outcome")
if isinstance(outcome, msgs.Error):
    st.error(f"Generation failed: {outcome.message}")
elif isinstance(outcome, msgs.Cancelled):
    st.warning("Generation cancelled.")

preset = outcome.preset if isinstance(outcome, msgs.Done) else None
if preset is not None:
    output = preset.output()
    display = _upscaled(output, upscale)
    st.image(_add_passepartout(display, border=28), use_container_width=True)

    buf = io.BytesIO()
    display.save(buf, format="PNG")
    _, dl_col, _ = st.columns([1, 2, 1])
    with dl_col:
        st.download_button(
            "SAVE ART",
            data=buf.getvalue(),
            file_name="pixel_rearrange.png",
            mime="image/png",
            use_container_width=True,
        )

    m1, m2, m3 = st.columns(3)
    m1.metric("Resolution", f"{preset.sidelen} × {preset.sidelen}")
    m2.metric("Pixels moved", f"{int(np.sum(preset.assignments != np.arange(preset.assignments.size))):,}")
    m3.metric("Time", f"{st.session_state.get('elapsed', 0.0):.1f} s")

    doc1, doc2 = st.columns(2)
    with doc1:
        st.image(_add_passepartout(_upscaled(preset.inner.source_img, upscale), 12))
        st.markdown('<div class="label-detail">Source</div>', unsafe_allow_html=True)
    if preset.target_img is not None:
        with doc2:
            st.image(_add_passepartout(_upscaled(preset.target_img, upscale), 12))
            st.markdown('<div class="label-detail">Target</div>', unsafe_allow_html=True)
