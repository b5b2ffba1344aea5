
import hashlib, json, logging, os, time
from typing import Any, List, Optional

import structlog

def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=False,
    )

def criteria_hash(criteria: Any) -> str:
    j = json.dumps(criteria, ensure_ascii=False, sort_keys=True, default=str)
    return hashlib.sha256(j.encode()).hexdigest()

def write_audit(query: Optional[str], original: Any, criteria: Any, sql: str, params: List[Any],
                outdir: str = 'runs') -> str:
    os.makedirs(outdir, exist_ok=True)
    rec = {
        'query': query,
        'original': original,
        'criteria': criteria,
        'sql': sql,
        'params': params,
        'criteria_hash': criteria_hash(criteria),
        'ts': int(time.time())
    }
    path = os.path.join(outdir, f'audit_{rec["ts"]}_{rec["criteria_hash"][:12]}.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(rec, f, ensure_ascii=False, indent=2, default=str)
    structlog.get_logger(__name__).info("audit_written", path=path, criteria_hash=rec["criteria_hash"])
    return path
