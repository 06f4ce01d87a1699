"""
Docker Images API
"""

import io
import logging
import os
import tarfile
from typing import Any, Callable, Dict, List, Optional, Union

from ..exceptions import APIError, BuildError, ImageNotFound, ValidationError
from ..MODELS.auth import encode_auth_header, resolve_auth
from ..REGISTRY.image_reference import ImageReference

logger = logging.getLogger(__name__)


def _raise_on_stream_error(event: Dict[str, Any], error_cls=APIError):
    if "error" in event or "errorDetail" in event:
        detail = event.get("errorDetail") or {}
        message = detail.get("message") or event.get("error") or "unknown error"
        raise error_cls(message, status_code=detail.get("code"), explanation=message)


def tar_build_context(path: str) -> bytes:
    """
    Archive a build context directory, honouring simple .dockerignore entries.
    """
    ignored = set()
    ignore_file = os.path.join(path, ".dockerignore")
    if os.path.exists(ignore_file):
        with open(ignore_file, "r", encoding="utf-8") as f:
            ignored = {line.strip().rstrip("/") for line in f
                       if line.strip() and not line.startswith("#")}

    tar_stream = io.BytesIO()
    with tarfile.open(fileobj=tar_stream, mode="w") as tar:
        for root, dirs, files in os.walk(path):
            rel_root = os.path.relpath(root, path)
            dirs[:] = sorted(d for d in dirs
                             if os.path.normpath(os.path.join(rel_root, d)) not in ignored)
            for file in sorted(files):
                arcname = os.path.normpath(os.path.join(rel_root, file))
                if arcname in ignored:
                    continue
                tar.add(os.path.join(root, file), arcname=arcname)
    return tar_stream.getvalue()


class Image:
    """Docker Image object"""

    def __init__(self, attrs: Dict[str, Any], collection: "ImageCollection"):
        self.attrs = attrs
        self.collection = collection

    @property
    def id(self) -> str:
        return self.attrs.get("Id", "")

    @property
    def short_id(self) -> str:
        return self.id.split(":")[-1][:12]

    @property
    def tags(self) -> List[str]:
        return [t for t in self.attrs.get("RepoTags") or [] if t != "<none>:<none>"]

    def __repr__(self):
        return f"<Image: {self.tags[0] if self.tags else self.short_id}>"

    def reload(self) -> "Image":
        self.attrs = self.collection.inspect(self.id)
        return self

    def history(self) -> List[Dict[str, Any]]:
        return self.collection.history(self.id)

    def tag(self, repository: str, tag: Optional[str] = None) -> bool:
        return self.collection.tag(self.id, repository, tag)

    def remove(self, force: bool = False, noprune: bool = False):
        return self.collection.remove(self.id, force=force, noprune=noprune)


class ImageCollection:
    """Docker Images collection"""

    def __init__(self, client):
        self.client = client

    @property
    def http(self):
        return self.client.http

    def list(self, name: Optional[str] = None, all: bool = False,
             filters: Optional[Dict[str, Any]] = None) -> List[Image]:
        """
        List images

        Args:
            name: Only images whose repository matches this reference
            all: Show all images (including intermediates)
            filters: Filters to apply
        """
        filters = dict(filters or {})
        if name:
            filters["reference"] = [name]
        params: Dict[str, Any] = {"all": all}
        if filters:
            params["filters"] = filters
        images_data = self.http.request("GET", "/images/json", params=params) or []
        return [Image(img_data, self) for img_data in images_data]

    def get(self, name: str) -> Image:
        """
        Get image by name or ID

        Raises:
            ImageNotFound: If image not found
        """
        return Image(self.inspect(name), self)

    def inspect(self, name: str) -> Dict[str, Any]:
        return self.http.request("GET", f"/images/{name}/json", not_found=ImageNotFound)

    def exists(self, name: str) -> bool:
        try:
            self.inspect(name)
        except ImageNotFound:
            return False
        return True

    def pull(self, image: Optional[str] = None, src: Optional[str] = None,
             repo: Optional[str] = None, tag: Optional[str] = None,
             auth_password: Optional[Dict[str, Any]] = None,
             auth_token: Optional[Dict[str, Any]] = None,
             platform: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Pull an image from a registry, or import one from a URL.

        Args:
            image: Image reference to pull; a tag in the reference is used unless ``tag`` is given
            src: Source URL to import from instead of pulling
            repo: Repository name for an imported image
            tag: Tag to pull or to give the imported image
            auth_password: PasswordAuth or dict with username/password/email/server_address
            auth_token: TokenAuth or dict with identity_token
            platform: Platform (e.g., linux/amd64)

        Returns:
            The progress events reported by the daemon.

        Raises:
            ValidationError: Both auth forms given, malformed credentials, or neither image nor src.
            APIError: The daemon reported a pull failure.
        """
        auth = resolve_auth(auth_password, auth_token)
        params: Dict[str, Any] = {"platform": platform}
        if image:
            ref = ImageReference.parse(image)
            if ref.digest and not tag:
                params["fromImage"] = f"{ref.name}@{ref.digest}"
            else:
                params["fromImage"] = ref.name
                params["tag"] = tag or ref.tag
        elif src:
            params.update({"fromSrc": src, "repo": repo, "tag": tag})
        else:
            raise ValidationError("pull() needs either image or src")

        headers = {"X-Registry-Auth": encode_auth_header(auth)} if auth else None
        logger.info("Pulling %s", params.get("fromImage") or src)
        events = []
        for event in self.http.stream_json("POST", "/images/create", params=params, headers=headers,
                                           not_found=ImageNotFound):
            _raise_on_stream_error(event)
            events.append(event)
        return events

    def push(self, repository: str, tag: Optional[str] = None,
             auth_password: Optional[Dict[str, Any]] = None,
             auth_token: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Push an image to its registry.

        Raises:
            ValidationError: Both auth forms given or malformed credentials.
            APIError: The daemon reported a push failure.
        """
        auth = resolve_auth(auth_password, auth_token)
        if tag is None:
            repository, tag = ImageReference.split(repository)
        headers = {"X-Registry-Auth": encode_auth_header(auth)}
        logger.info("Pushing %s:%s", repository, tag)
        events = []
        for event in self.http.stream_json("POST", f"/images/{repository}/push", params={"tag": tag},
                                           headers=headers, not_found=ImageNotFound):
            _raise_on_stream_error(event)
            events.append(event)
        return events

    def build(self, path: Optional[str] = None, fileobj: Optional[bytes] = None,
              tag: Optional[str] = None, dockerfile: Optional[str] = None,
              buildargs: Optional[Dict[str, str]] = None, target: Optional[str] = None,
              cache_from: Optional[List[str]] = None, labels: Optional[Dict[str, str]] = None,
              rm: bool = True, forcerm: bool = False, nocache: bool = False, pull: bool = False,
              platform: Optional[str] = None,
              callback: Optional[Callable[[str], None]] = None) -> Image:
        """
        Build image from a context directory or a prepared tar archive

        Args:
            path: Build context directory
            fileobj: Tar archive of the build context, used instead of ``path``
            tag: Tag for the image
            dockerfile: Dockerfile path relative to the context
            buildargs: Build arguments
            target: Build stage to stop at
            cache_from: Images used as cache sources
            labels: Labels to set on the image
            rm: Remove intermediate containers
            callback: Called with each line of build output

        Returns:
            Built Image object

        Raises:
            BuildError: The build stream reported an error.
        """
        if fileobj is None:
            if not path or not os.path.isdir(path):
                raise ValidationError(f"Build context is not a directory: {path!r}")
            fileobj = tar_build_context(path)

        params = {
            "t": tag,
            "dockerfile": dockerfile,
            "buildargs": buildargs or None,
            "target": target,
            "cachefrom": cache_from or None,
            "labels": labels or None,
            "rm": rm,
            "forcerm": forcerm,
            "nocache": nocache,
            "pull": pull,
            "platform": platform,
        }
        headers = {"Content-Type": "application/x-tar"}

        logger.info("Building image %s from %s", tag or "<untagged>", path or "<archive>")
        image_id = None
        for event in self.http.stream_json("POST", "/build", data=fileobj, params=params,
                                           headers=headers):
            _raise_on_stream_error(event, BuildError)
            message = (event.get("stream") or "").strip()
            if message:
                logger.debug("build: %s", message)
                if callback:
                    callback(message)
            aux = event.get("aux")
            if isinstance(aux, dict) and aux.get("ID"):
                image_id = aux["ID"]

        if not image_id and not tag:
            raise BuildError("Build finished without reporting an image ID")
        return self.get(image_id or tag)

    def search(self, term: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Search Docker Hub"""
        return self.http.request("GET", "/images/search", params={"term": term, "limit": limit}) or []

    def prune(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Remove unused images"""
        params = {"filters": filters} if filters else None
        return self.http.request("POST", "/images/prune", params=params)

    def remove(self, image: str, force: bool = False, noprune: bool = False) -> List[Dict[str, Any]]:
        """Remove image"""
        return self.http.request("DELETE", f"/images/{image}", params={"force": force, "noprune": noprune},
                                 not_found=ImageNotFound)

    def tag(self, image: str, repository: str, tag: Optional[str] = None) -> bool:
        """Tag an image into a repository"""
        self.http.request("POST", f"/images/{image}/tag", params={"repo": repository, "tag": tag},
                          not_found=ImageNotFound)
        return True

    def history(self, image: str) -> List[Dict[str, Any]]:
        return self.http.request("GET", f"/images/{image}/history", not_found=ImageNotFound)

    def export(self, names: Union[str, List[str]], output: Optional[str] = None) -> Optional[bytes]:
        """
        Export images as a tarball.

        Returns:
            The tarball bytes, or None when written to ``output``.
        """
        if isinstance(names, str):
            names = [names]
        data = self.http.request("GET", "/images/get", params={"names": ",".join(names)},
                                 raw=True, not_found=ImageNotFound)
        if output is None:
            return data
        with open(output, "wb") as f:
            f.write(data)
        return None

    def import_image(self, src: Union[str, bytes], repository: Optional[str] = None,
                     tag: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Import a root filesystem tarball given as a path or bytes.
        """
        if isinstance(src, str):
            with open(src, "rb") as f:
                src = f.read()
        params = {"fromSrc": "-", "repo": repository, "tag": tag}
        events = []
        for event in self.http.stream_json("POST", "/images/create", data=src, params=params,
                                           headers={"Content-Type": "application/x-tar"}):
            _raise_on_stream_error(event)
            events.append(event)
        return events
