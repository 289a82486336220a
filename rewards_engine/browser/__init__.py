"""Browser-side helpers: tabs, pacing, diagnostics."""
