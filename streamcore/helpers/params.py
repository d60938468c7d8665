import dataclasses
import json

from typing import Dict, Type, TypeVar

from dacite import Config, from_dict


P = TypeVar("P", bound="Params")


class Params:
    """JSON round-tripping for parameter dataclasses.

    Integers are accepted where floats are expected, so hand-written JSON
    such as `"gamma": 2` loads. Unknown keys are rejected.
    """

    @classmethod
    def from_dict(cls: Type[P], data: Dict[str, object]) -> P:
        return from_dict(data_class=cls, data=data, config=Config(cast=[float], strict=True))

    @classmethod
    def read_json(cls: Type[P], file_path: str) -> P:
        with open(file_path, "r") as f:
            return cls.from_dict(json.load(f))

    def write_json(self, file_path: str):
        with open(file_path, "w") as f:
            json.dump(dataclasses.asdict(self), f, indent=4, sort_keys=False)

    def __str__(self):
        return json.dumps(dataclasses.asdict(self), indent=4)

    def to_dict(self):
        return dataclasses.asdict(self)
