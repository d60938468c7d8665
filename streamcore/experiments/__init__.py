import abc

from streamcore.helpers.params import Params


def make_experiment_generation_registry():
    registry = dict()
    def wrapper(func):
        registry[func.__name__] = func
        return func
    wrapper.registry = registry
    return wrapper


class Experiment:
    @abc.abstractmethod
    def run(self) -> None:
        raise NotImplementedError


class ExperimentParams(Params):
    pass
