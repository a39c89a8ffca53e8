import re


def slugify(title, separator="-"):
    """Turn a title into a URL slug."""
    slug = re.sub(r"[^a-z0-9]+", separator, title.lower())
    return slug.strip(separator)


class Formatter:
    def __init__(self, width):
        self.width = width

    @staticmethod
    def pad(text, width=10):
        text = str(text)
        return text.ljust(width)

    def _wrap(self, text):
        lines = []
        while text:
            lines.append(text[: self.width])
            text = text[self.width:]
        return lines
