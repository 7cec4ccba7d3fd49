"""AnvilView gui — 可选的 PyVista 预览"""
