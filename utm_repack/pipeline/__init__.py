"""Steps of the image repackaging procedure, wired together by ``runner``."""
