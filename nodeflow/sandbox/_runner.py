"""Child-process entry point for the sandboxed evaluator.

Reads ``{"code", "input", "inputs", "memory_limit_mb"}`` as JSON on stdin,
executes the snippet with a reduced builtins table, and writes
``{"ok": true, "output": ...}`` or ``{"ok": false, "error": ...}`` to stdout.

Runs under ``python -I`` and imports nothing from the parent package.
"""

import json
import math
import re
import sys

SAFE_BUILTINS = {
    "abs": abs, "all": all, "any": any, "bool": bool, "dict": dict,
    "enumerate": enumerate, "filter": filter, "float": float, "int": int,
    "isinstance": isinstance, "len": len, "list": list, "map": map, "max": max,
    "min": min, "range": range, "reversed": reversed, "round": round,
    "set": set, "sorted": sorted, "str": str, "sum": sum, "tuple": tuple,
    "zip": zip, "ValueError": ValueError, "KeyError": KeyError,
    "True": True, "False": False, "None": None,
}


def _limit_memory(megabytes):
    try:
        import resource
    except ImportError:
        return  # Not available on this platform
    limit = int(megabytes) * 1024 * 1024
    try:
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
    except (ValueError, OSError):
        pass


def main():
    job = json.loads(sys.stdin.read())
    _limit_memory(job.get("memory_limit_mb", 256))

    scope = {
        "__builtins__": SAFE_BUILTINS,
        "json": json,
        "math": math,
        "re": re,
        "input": job.get("input", ""),
        "inputs": job.get("inputs", {}),
        "output": None,
    }
    try:
        exec(compile(job["code"], "<custom-code>", "exec"), scope)
    except MemoryError:
        result = {"ok": False, "error": "Memory limit exceeded"}
    except Exception as e:
        result = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    else:
        output = scope.get("output")
        if output is None:
            result = {"ok": False, "error": "Code did not assign a value to 'output'"}
        elif isinstance(output, str):
            result = {"ok": True, "output": output}
        else:
            result = {"ok": True, "output": json.dumps(output, default=str)}
    sys.stdout.write(json.dumps(result))


if __name__ == "__main__":
    main()
