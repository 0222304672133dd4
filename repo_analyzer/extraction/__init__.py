from repo_analyzer.extraction.parser import extract_json, parse_json, require_keys

__all__ = ["extract_json", "parse_json", "require_keys"]
