# roommatch/utils.py
from typing import Any, Dict, Optional
from bson import ObjectId
from datetime import datetime
from fastapi import HTTPException

def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte _id -> id (str) y todos los ObjectIds a strings.
    Las fechas se dejan como datetime: los schemas de salida las serializan.
    Si doc es None, devuelve {}.
    """
    if doc is None:
        return {}
    d = dict(doc)

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, dict):
            d[key] = to_id(value)
        elif isinstance(value, list):
            d[key] = [
                str(item) if isinstance(item, ObjectId)
                else to_id(item) if isinstance(item, dict)
                else item
                for item in value
            ]

    return d

def to_object_id(value: str, field_name: str = "id") -> ObjectId:
    """
    Convierte un string a ObjectId con validación.
    """
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}: {value}")
    return ObjectId(value)

def normalize_identifier(value: Any) -> Optional[str]:
    """
    Normaliza un participante a su email en minúsculas.
    Documentos antiguos guardan objetos ({_id, email, name}) en vez de strings.
    """
    if isinstance(value, dict):
        value = value.get("email") or value.get("_id") or value.get("id")
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value.lower() if value else None

def utcnow() -> datetime:
    return datetime.utcnow()
