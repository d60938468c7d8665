import json, os, uuid

from importlib import import_module
from pathlib import Path
from typing import List, Optional, Tuple

import click

from joblib import Parallel, delayed
from threadpoolctl import threadpool_limits

from streamcore.helpers.logger import get_logger


logger = get_logger("runner")


def generate_id() -> str:
    return str(uuid.uuid4().hex)


def load_experiment_module(experiment_type: str):
    module_name = f"streamcore.experiments.{experiment_type}"
    try:
        return import_module(module_name)
    except ModuleNotFoundError:
        raise ValueError(f"Experiment module '{module_name}' was not found.")


def run_single(index: int, n_total: int, experiment_type: str, params_path: Path, working_dir: Path, n_threads: int) -> None:
    logger.info(f"[{index+1}/{n_total}] Running {experiment_type} experiment in {working_dir}")
    experiment_module = load_experiment_module(experiment_type)
    with open(params_path, "r") as f:
        experiment_params = json.load(f)
    with threadpool_limits(limits=n_threads):
        experiment = experiment_module.initialize_experiment(
            experiment_params=experiment_params,
            working_dir=str(working_dir),
        )
        experiment.run()


class ExperimentRunner:
    def __init__(self,
        experiment_type: str,
        output_dir: str,
        experiment_name: Optional[str] = None,
        params_path: Optional[str] = None,
        n_repetitions: int = 1,
        n_jobs: int = 1,
        n_threads: int = 1,
        ) -> None:
        self._experiment_type = experiment_type
        self._output_dir = Path(output_dir)
        self._experiment_name = experiment_name
        self._params_path = None if params_path is None else Path(params_path)
        self._n_repetitions = n_repetitions
        self._n_jobs = n_jobs
        self._n_threads = n_threads

    def run(self) -> List[Path]:
        jobs = self._create_jobs()
        logger.info(f"Running {len(jobs)} experiments...")
        Parallel(n_jobs=self._n_jobs)(
            delayed(run_single)(
                index=index,
                n_total=len(jobs),
                experiment_type=self._experiment_type,
                params_path=params_path,
                working_dir=working_dir,
                n_threads=self._n_threads,
            )
            for index, (params_path, working_dir) in enumerate(jobs)
        )
        return [working_dir for _, working_dir in jobs]

    def _create_jobs(self) -> List[Tuple[Path, Path]]:
        if self._params_path is not None:
            return [(self._params_path, self._output_dir)]

        generate_experiments = self._load_experiment_generator()
        gen_id = generate_id()
        jobs = []
        for it in range(self._n_repetitions):
            for exp_params in generate_experiments():
                experiment_no = f"g{gen_id}-r{it}-x{generate_id()}"
                working_dir = self._output_dir / self._experiment_type / self._experiment_name / experiment_no
                os.makedirs(working_dir, exist_ok=True)
                params_path = working_dir / "experiment-params.json"
                exp_params.write_json(params_path)
                jobs.append((params_path, working_dir))
        return jobs

    def _load_experiment_generator(self):
        experiment_module = load_experiment_module(self._experiment_type)
        registry = experiment_module.experiment_generation.registry # type: ignore
        if self._experiment_name not in registry:
            raise ValueError(
                f"Experiment with the name '{self._experiment_name}' was not found in "
                f"module '{experiment_module.__name__}'. Known: {sorted(registry)}"
            )
        return registry[self._experiment_name] # type: ignore


@click.command(help="Run streaming coreset experiments.")
@click.option(
    "-t",
    "--experiment-type",
    type=click.STRING,
    default="stream",
    required=False,
)
@click.option(
    "-n",
    "--experiment-name",
    type=click.STRING,
    required=False,
    help="Name of a registered experiment sweep.",
)
@click.option(
    "-p",
    "--params-path",
    type=click.Path(exists=True, dir_okay=False),
    required=False,
    help="JSON file with the parameters of a single experiment.",
)
@click.option(
    "-o",
    "--output-dir",
    type=click.STRING,
    required=True,
)
@click.option(
    "-r",
    "--n-repetitions",
    type=click.INT,
    default=1,
    required=False,
)
@click.option(
    "-j",
    "--n-jobs",
    type=click.INT,
    required=False,
    default=1
)
@click.option(
    "--n-threads",
    type=click.INT,
    required=False,
    default=1
)
def main(experiment_type: str, experiment_name: Optional[str], params_path: Optional[str], output_dir: str,
         n_repetitions: int, n_jobs: int, n_threads: int) -> None:
    if (experiment_name is None) == (params_path is None):
        raise click.UsageError("Pass exactly one of --experiment-name or --params-path.")
    ExperimentRunner(
        experiment_type=experiment_type,
        output_dir=output_dir,
        experiment_name=experiment_name,
        params_path=params_path,
        n_repetitions=n_repetitions,
        n_jobs=n_jobs,
        n_threads=n_threads,
    ).run()


if __name__ == "__main__":
    main()  # pylint: disable=no-value-for-parameter
