import yaml


class ConfigSafeLoader(yaml.SafeLoader):
    """SafeLoader that leaves date-like scalars as strings.

    Category and directory names such as ``2024-01-01`` must reach pydantic as
    text, not as ``datetime.date`` objects.
    """

    @classmethod
    def without_implicit_resolver(cls, tag: str) -> None:
        # Copy before filtering so yaml.SafeLoader itself is left untouched
        if "yaml_implicit_resolvers" not in cls.__dict__:
            cls.yaml_implicit_resolvers = {key: list(value) for key, value in cls.yaml_implicit_resolvers.items()}

        for first_char, resolvers in cls.yaml_implicit_resolvers.items():
            cls.yaml_implicit_resolvers[first_char] = [(t, regexp) for t, regexp in resolvers if t != tag]


ConfigSafeLoader.without_implicit_resolver("tag:yaml.org,2002:timestamp")
