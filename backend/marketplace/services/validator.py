"""
Modulo de validacion de uploads.

Este servicio es la PRIMERA linea de defensa contra archivos maliciosos.
Corre antes de que el archivo llegue al almacenamiento (S3), sin importar
las politicas de acceso que el almacenamiento tenga despues.

Validaciones, en orden (la primera que falla corta la cadena):
    1. Tamano declarado <= maximo de la politica.
    2. Tipo MIME declarado en la lista blanca de la politica.
    3. Extension (lo que va despues del ultimo ".") en la lista blanca.
    4. Heuristicas sobre el nombre:
       - extensiones peligrosas (ejecutables, scripts, shells, bases de
         datos) aunque el MIME declarado diga "image/jpeg";
       - archivos ocultos (empiezan con ".");
       - doble extension con un segmento interior peligroso
         ("foto.exe.jpg").
    5. Topes por categoria que aplican aunque la politica sea mas
       permisiva: imagenes 10MB, video 100MB, audio 50MB, PDF 25MB.

Ademas, cuando tenemos los bytes, check_content() compara el tipo real
(magic bytes, con python-magic) contra el MIME declarado. Un ejecutable
renombrado a "foto.png" con Content-Type image/png no pasa.

Patron de diseno: Resultado como dataclass
------------------------------------------
validate_upload() nunca lanza excepciones: retorna un ValidationResult con
is_valid, el motivo del rechazo y, si paso, el nombre sanitizado.
"""

import re
import time
import uuid
from dataclasses import dataclass

# python-magic: detecta el tipo MIME real leyendo la firma del archivo
# (la misma base de datos que usa el comando `file` de Linux).
import magic

MB = 1024 * 1024

DEFAULT_FILENAME = "file"
MAX_FILENAME_LENGTH = 100


@dataclass(frozen=True)
class UploadPolicy:
    """
    Politica de validacion de uploads.

    Atributos:
        name (str): Nombre de la politica ("images", "nft_assets", "custom").
        max_size_bytes (int): Tamano maximo aceptado.
        allowed_mime_types (frozenset): Lista blanca de MIME declarados.
        allowed_extensions (frozenset): Lista blanca de extensiones, en
            minusculas y sin punto.
    """
    name: str
    max_size_bytes: int
    allowed_mime_types: frozenset[str]
    allowed_extensions: frozenset[str]

    @classmethod
    def custom(cls, max_size_bytes: int, allowed_mime_types, allowed_extensions) -> "UploadPolicy":
        return cls(
            name="custom",
            max_size_bytes=max_size_bytes,
            allowed_mime_types=frozenset(allowed_mime_types),
            allowed_extensions=frozenset(ext.lower().lstrip(".") for ext in allowed_extensions),
        )


IMAGES = UploadPolicy(
    name="images",
    max_size_bytes=10 * MB,
    allowed_mime_types=frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"}),
    allowed_extensions=frozenset({"jpg", "jpeg", "png", "gif", "webp"}),
)

NFT_ASSETS = UploadPolicy(
    name="nft_assets",
    max_size_bytes=50 * MB,
    allowed_mime_types=frozenset({
        "image/jpeg", "image/png", "image/gif", "image/webp",
        "video/mp4", "video/webm",
        "audio/mpeg", "audio/wav",
        "application/pdf",
        "model/gltf-binary", "model/gltf+json",
    }),
    allowed_extensions=frozenset({
        "jpg", "jpeg", "png", "gif", "webp",
        "mp4", "webm", "mov",
        "mp3", "wav", "ogg",
        "pdf",
        "glb", "gltf",
    }),
)

# Categoria enviada por el frontend -> politica.
CATEGORY_POLICIES = {
    "image": IMAGES,
    "avatar": IMAGES,
    "collection-image": IMAGES,
    "banner": IMAGES,
    "nft": NFT_ASSETS,
    "nft-asset": NFT_ASSETS,
}

# Nombres que se rechazan aunque el MIME declarado parezca inofensivo.
DANGEROUS_NAME_PATTERNS = (
    re.compile(r"\.(exe|bat|cmd|com|pif|scr|vbs|js|jar|php|asp|aspx|jsp)$", re.IGNORECASE),
    re.compile(r"\.(sh|bash|zsh|fish)$", re.IGNORECASE),
    re.compile(r"\.(sql|db|sqlite)$", re.IGNORECASE),
)

# Segmentos interiores que delatan una doble extension ("x.exe.jpg").
DOUBLE_EXTENSION_BLOCKLIST = frozenset({"exe", "bat", "cmd", "com", "scr"})

# (prefijo MIME, tope, etiqueta para el mensaje)
CATEGORY_SIZE_CAPS = (
    ("image/", 10 * MB, "Image"),
    ("video/", 100 * MB, "Video"),
    ("audio/", 50 * MB, "Audio"),
)
PDF_SIZE_CAP = 25 * MB

# Tipos que python-magic puede reportar para cada MIME declarado.
# El glTF JSON se detecta como JSON o texto plano. El glTF binario no esta
# en la base de libmagic: se verifica aparte con su firma GLTF_MAGIC.
SNIFF_COMPATIBLE = {
    "audio/wav": frozenset({"audio/wav", "audio/x-wav", "audio/vnd.wave"}),
    "audio/mpeg": frozenset({"audio/mpeg", "audio/mp3"}),
    "model/gltf+json": frozenset({"model/gltf+json", "application/json", "text/plain"}),
}

# Los primeros 4 bytes de todo archivo .glb.
GLTF_MAGIC = b"glTF"


@dataclass
class UploadCandidate:
    """Metadata declarada de un archivo entrante (lo que dice el cliente)."""
    filename: str
    content_type: str
    size: int


@dataclass
class ValidationResult:
    """
    Resultado de validar un archivo.

    Atributos:
        is_valid (bool): True si paso todas las validaciones.
        error (str): Motivo del rechazo ("" si es valido).
        sanitized_filename (str): Nombre seguro para guardar (solo si valido).
        mime_type (str): MIME declarado (solo si valido).
        size (int): Tamano en bytes (solo si valido).
    """
    is_valid: bool
    error: str = ""
    sanitized_filename: str = ""
    mime_type: str = ""
    size: int = 0

    def as_detail(self) -> dict:
        if not self.is_valid:
            return {"valid": False, "error": self.error}
        return {
            "valid": True,
            "sanitized_filename": self.sanitized_filename,
            "mime_type": self.mime_type,
            "size": self.size,
        }


def policy_for_category(category: str | None) -> UploadPolicy:
    """Politica para una categoria del frontend. Por defecto, imagenes."""
    return CATEGORY_POLICIES.get((category or "").strip().lower(), IMAGES)


def file_extension(filename: str) -> str:
    """Extension en minusculas despues del ultimo punto ("" si no hay)."""
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def sanitize_filename(filename: str) -> str:
    """
    Nombre seguro para usar como parte de una key de almacenamiento.

        "../../etc/passwd"   -> "_._etc_passwd"
        "mi foto (1).png"    -> "mi_foto_1_.png"
    """
    sanitized = re.sub(r"[^A-Za-z0-9.-]", "_", filename or "")
    sanitized = re.sub(r"\.+", ".", sanitized)
    sanitized = sanitized.strip(".")
    sanitized = re.sub(r"_{2,}", "_", sanitized)

    if not sanitized:
        sanitized = DEFAULT_FILENAME

    if len(sanitized) > MAX_FILENAME_LENGTH:
        extension = file_extension(sanitized)
        if extension and len(extension) < MAX_FILENAME_LENGTH - 1:
            stem_length = MAX_FILENAME_LENGTH - len(extension) - 1
            sanitized = f"{sanitized[:stem_length]}.{extension}"
        else:
            sanitized = sanitized[:MAX_FILENAME_LENGTH]

    return sanitized


def _check_name(filename: str) -> str:
    for pattern in DANGEROUS_NAME_PATTERNS:
        if pattern.search(filename):
            return "File type not allowed for security reasons"

    if filename.startswith("."):
        return "Hidden files are not allowed"

    parts = filename.split(".")
    if len(parts) > 2:
        for part in parts[:-1]:
            if part.lower() in DOUBLE_EXTENSION_BLOCKLIST:
                return "Suspicious file extension detected"
    return ""


def _check_category_caps(content_type: str, size: int) -> str:
    for prefix, cap, label in CATEGORY_SIZE_CAPS:
        if content_type.startswith(prefix) and size > cap:
            return f"{label} file too large (max {cap // MB}MB)"
    if content_type == "application/pdf" and size > PDF_SIZE_CAP:
        return f"PDF file too large (max {PDF_SIZE_CAP // MB}MB)"
    return ""


def validate_upload(file: UploadCandidate, policy: UploadPolicy) -> ValidationResult:
    """
    Valida la metadata declarada de un archivo contra una politica.

    Parametros:
        file (UploadCandidate): nombre, MIME declarado y tamano.
        policy (UploadPolicy): politica a aplicar.

    Retorna:
        ValidationResult: con el nombre sanitizado si el archivo es valido.
    """
    filename = file.filename or ""
    content_type = (file.content_type or "").lower()

    # Metadata ilegible: se rechaza (fail closed).
    if file.size is None or file.size < 0:
        return ValidationResult(is_valid=False, error="Could not determine file size")

    # --- Validacion 1: tamano ---
    if file.size > policy.max_size_bytes:
        return ValidationResult(
            is_valid=False,
            error=f"File too large (max {round(policy.max_size_bytes / MB)}MB)",
        )

    # --- Validacion 2: MIME declarado ---
    if content_type not in policy.allowed_mime_types:
        return ValidationResult(
            is_valid=False,
            error=(
                f"File type '{content_type or 'unknown'}' is not allowed. "
                f"Allowed types: {', '.join(sorted(policy.allowed_mime_types))}"
            ),
        )

    # --- Validacion 3: extension ---
    extension = file_extension(filename)
    if not extension or extension not in policy.allowed_extensions:
        return ValidationResult(
            is_valid=False,
            error=(
                f"File extension '{extension}' is not allowed. "
                f"Allowed extensions: {', '.join(sorted(policy.allowed_extensions))}"
            ),
        )

    # --- Validacion 4: heuristicas sobre el nombre ORIGINAL ---
    error = _check_name(filename)
    if error:
        return ValidationResult(is_valid=False, error=error)

    # --- Validacion 5: topes por categoria ---
    error = _check_category_caps(content_type, file.size)
    if error:
        return ValidationResult(is_valid=False, error=error)

    return ValidationResult(
        is_valid=True,
        sanitized_filename=sanitize_filename(filename),
        mime_type=content_type,
        size=file.size,
    )


def check_content(declared_type: str, head: bytes) -> str:
    """
    Compara el tipo real (magic bytes) con el MIME declarado.

    Parametros:
        declared_type (str): MIME que envio el cliente (ya validado).
        head (bytes): Primeros bytes del archivo.

    Retorna:
        str: Mensaje de error, o "" si el contenido es compatible.
    """
    if not head:
        return "File is empty"

    declared = declared_type.lower()
    if declared == "model/gltf-binary":
        if head[:4] == GLTF_MAGIC:
            return ""
        return f"File content does not match declared type '{declared}'"

    detected = magic.from_buffer(head, mime=True)
    if detected == declared or detected in SNIFF_COMPATIBLE.get(declared, ()):
        return ""
    return f"File content ('{detected}') does not match declared type '{declared}'"


def generate_secure_file_path(user_id: str, filename: str, category: str = "uploads") -> str:
    """
    Key de almacenamiento: {categoria}/{usuario}/{timestamp}-{aleatorio}-{nombre}.

    El segmento aleatorio evita colisiones cuando el mismo usuario sube dos
    archivos con el mismo nombre en el mismo milisegundo.
    """
    timestamp = int(time.time() * 1000)
    random_id = uuid.uuid4().hex[:12]
    return (
        f"{sanitize_filename(category)}/{sanitize_filename(user_id)}/"
        f"{timestamp}-{random_id}-{sanitize_filename(filename)}"
    )


def validate_file_path(file_path: str) -> tuple[bool, str]:
    """Rechaza rutas con traversal, rutas absolutas y rutas demasiado largas."""
    if ".." in file_path or "~" in file_path or file_path.startswith("/"):
        return False, "Invalid file path"
    if re.match(r"^[A-Za-z]:", file_path) or file_path.startswith("\\"):
        return False, "Absolute paths not allowed"
    if len(file_path) > 255:
        return False, "File path too long"
    return True, ""
