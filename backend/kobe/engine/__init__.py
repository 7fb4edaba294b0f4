"""Workflow Engine: graph model, variable resolution, expressions and traversal.

Import from the submodules directly (``kobe.engine.executor`` etc.); node
implementations depend on the resolver, so this package stays import-free.
"""
