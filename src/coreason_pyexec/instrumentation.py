# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

"""Rewrites a snippet into a program that captures its figures and images.

The generated program installs decorators on the display and explicit-save entry
points of matplotlib, and on PIL's ``Image.show``, then runs the snippet in a fresh
``__main__`` module. After the snippet finishes (or raises), any figure that was
never displayed or saved is persisted by a final sweep. All capture state lives in
one object created inside the generated program, so nothing is shared across runs.
"""

from pathlib import Path
from string import Template

from coreason_pyexec.artifacts import IMAGE_EXTENSIONS

SNIPPET_FILENAME = "<snippet>"

_PROGRAM = Template('''\
import builtins as _builtins
import linecache as _linecache
import os as _os
import sys as _sys
import traceback as _traceback
import types as _types
import warnings as _warnings
import weakref as _weakref

_ARTIFACT_DIR = $artifact_dir
_IMAGE_EXTENSIONS = $extensions
_FILENAME = $filename
_SOURCE = $source


class _ArtifactCapture:
    def __init__(self, directory):
        try:
            _os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            self._warn("artifact directory", exc)
            directory = _os.getcwd()
        self.directory = directory
        self.counter = 0
        self.persisted = _weakref.WeakSet()
        self.pyplot = None
        self.original_savefig = None

    def _warn(self, where, exc):
        _sys.stderr.write("[capture] warning: %s failed: %s\\n" % (where, exc))

    def next_path(self, prefix, ext="png"):
        path = _os.path.join(self.directory, "%s_%03d.%s" % (prefix, self.counter, ext))
        self.counter += 1
        return path

    def install_pyplot(self):
        try:
            import matplotlib
        except ImportError:
            return
        try:
            matplotlib.use("Agg")
            import matplotlib.pyplot as plt
            from matplotlib.figure import Figure
        except Exception as exc:
            self._warn("matplotlib setup", exc)
            return

        capture = self
        original_show = plt.show
        original_savefig = Figure.savefig

        def show(*args, **kwargs):
            try:
                capture.persist_open_figures("plot")
                plt.close("all")
            except Exception as exc:
                capture._warn("pyplot.show", exc)
            with _warnings.catch_warnings():
                _warnings.simplefilter("ignore", UserWarning)
                return original_show(*args, **kwargs)

        def savefig(fig, fname, *args, **kwargs):
            try:
                fname = capture.route_save(fig, fname, kwargs)
            except Exception as exc:
                capture._warn("Figure.savefig", exc)
            return original_savefig(fig, fname, *args, **kwargs)

        try:
            plt.show = show
            Figure.savefig = savefig
        except Exception as exc:
            plt.show = original_show
            Figure.savefig = original_savefig
            self._warn("matplotlib hooks", exc)
            return
        self.pyplot = plt
        self.original_savefig = original_savefig

    def install_pil(self):
        try:
            from PIL import Image
        except ImportError:
            return

        capture = self
        original_show = Image.Image.show

        def show(image, *args, **kwargs):
            try:
                if image.mode not in ("1", "L", "LA", "I", "P", "RGB", "RGBA"):
                    image = image.convert("RGBA")
                image.save(capture.next_path("image"), format="PNG")
            except Exception as exc:
                capture._warn("PIL.Image.show", exc)
                return original_show(image, *args, **kwargs)

        try:
            Image.Image.show = show
        except Exception as exc:
            self._warn("PIL hooks", exc)

    def route_save(self, fig, fname, kwargs):
        if not isinstance(fname, (str, bytes, _os.PathLike)):
            return fname
        target = _os.fsdecode(_os.fspath(fname))
        self.persisted.add(fig)
        if _os.path.isabs(target):
            return fname
        ext = _os.path.splitext(target)[1].lower().lstrip(".")
        if ext not in _IMAGE_EXTENSIONS:
            ext = str(kwargs.get("format") or "png").lower()
            if ext not in _IMAGE_EXTENSIONS:
                ext = "png"
            kwargs["format"] = ext
        return self.next_path("saved", ext)

    def persist_open_figures(self, prefix):
        from matplotlib._pylab_helpers import Gcf

        for manager in sorted(Gcf.get_all_fig_managers(), key=lambda m: m.num):
            fig = manager.canvas.figure
            if fig in self.persisted:
                continue
            self.original_savefig(
                fig,
                self.next_path(prefix),
                dpi=150,
                bbox_inches="tight",
                facecolor="white",
                edgecolor="none",
            )
            self.persisted.add(fig)

    def finalize(self):
        if self.pyplot is None:
            return
        try:
            self.persist_open_figures("figure")
        except Exception as exc:
            self._warn("final figure sweep", exc)


def _run():
    capture = _ArtifactCapture(_ARTIFACT_DIR)
    capture.install_pyplot()
    capture.install_pil()

    _linecache.cache[_FILENAME] = (len(_SOURCE), None, _SOURCE.splitlines(True), _FILENAME)
    module = _types.ModuleType("__main__")
    module.__dict__["__builtins__"] = _builtins
    module.__dict__["__file__"] = _os.path.abspath(_sys.argv[0])
    wrapper = _sys.modules["__main__"]
    _sys.modules["__main__"] = module
    try:
        exec(compile(_SOURCE, _FILENAME, "exec"), module.__dict__)
    except SystemExit:
        raise
    except BaseException:
        exc_type, exc_value, exc_tb = _sys.exc_info()
        _traceback.print_exception(exc_type, exc_value, exc_tb.tb_next if exc_tb else None)
        return 1
    finally:
        capture.finalize()
        _sys.stdout.flush()
        _sys.modules["__main__"] = wrapper
    return 0


_sys.exit(_run())
''')


def inject(code: str, artifact_dir: Path | str) -> str:
    """Produce an instrumented program equivalent to ``code``.

    Args:
        code: The snippet submitted by the caller. It is embedded verbatim.
        artifact_dir: Directory the program persists captured images into.

    Returns:
        str: Source of the instrumented program.
    """
    return _PROGRAM.substitute(
        artifact_dir=repr(str(artifact_dir)),
        extensions=repr(tuple(IMAGE_EXTENSIONS)),
        filename=repr(SNIPPET_FILENAME),
        source=repr(code),
    )
