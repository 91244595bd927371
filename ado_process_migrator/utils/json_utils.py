import json
from datetime import datetime
from pathlib import Path
from typing import Any


class DateTimeEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def save_json_data(data: Any, filename: str, base_path: str = "output") -> Path:
    """Save data to a JSON file in the specified directory"""
    # Create directory if it doesn't exist
    path = Path(base_path)
    path.mkdir(parents=True, exist_ok=True)

    file_path = path / filename
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, cls=DateTimeEncoder, indent=2, ensure_ascii=False)
    return file_path


def load_json_data(file_path: str) -> Any:
    with open(file_path, 'r', encoding='utf-8') as f:
        return json.load(f)
